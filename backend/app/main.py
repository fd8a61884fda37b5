import math
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from reciplier.engine import process_template

app = FastAPI(title="Reciplier API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class TemplateRequest(BaseModel):
    template: str
    values: Optional[dict[str, Optional[float]]] = None
    frozen: Optional[dict[str, float]] = None


class InequalityInfo(BaseModel):
    var_name: str
    inf: float
    sup: float
    inf_strict: bool
    sup_strict: bool


class CellInfo(BaseModel):
    id: str
    urtext: str
    start_index: int
    end_index: int
    ceqn: list[str]
    cval: Optional[float]
    pegged: bool
    colon_error: Optional[str]
    multiple_numbers: bool
    ineq: Optional[InequalityInfo]
    ineq_error: bool


class SummaryInfo(BaseModel):
    runtime_ms: float
    total_cells: int
    total_equations: int
    validation_status: str
    timestamp: str
    library: str


class SolveResponse(BaseModel):
    template: str
    cells: list[CellInfo]
    equations: list[list[float | str]]
    assignment: dict[str, Optional[float]]
    satisfied: bool
    cell_values: dict[str, Optional[float]]
    violated_cells: list[str]
    errors: list[str]
    summary: SummaryInfo


def _json_number(value):
    # NaN and infinity have no JSON form.
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


@app.post("/api/solve", response_model=SolveResponse)
def solve(req: TemplateRequest):
    template = req.template
    if not template.strip():
        raise HTTPException(status_code=400, detail="Template cannot be empty.")

    try:
        result = process_template(template, values=req.values, frozen=req.frozen)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Solver error: {str(e)}")

    result["assignment"] = {k: _json_number(v) for k, v in result["assignment"].items()}
    result["cell_values"] = {k: _json_number(v) for k, v in result["cell_values"].items()}
    return result
