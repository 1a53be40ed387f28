"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from lending_insights.domain.models import QueryDefinition


class OutputColumnSchema(BaseModel):
    """Declared output column"""

    name: str
    type: str


class ParameterSchema(BaseModel):
    """Declared query parameter"""

    name: str
    type: str
    required: bool
    default: Optional[Any] = None
    minimum: Optional[Any] = None
    choices: Optional[List[Any]] = None
    description: str = ""


class QueryListResponse(BaseModel):
    """Response for GET /v1/queries"""

    queries: List[str]


class QueryDescriptionResponse(BaseModel):
    """Response for GET /v1/queries/{name}"""

    name: str
    description: str
    shape: str
    output_columns: List[OutputColumnSchema]
    parameters: List[ParameterSchema]

    @classmethod
    def from_definition(cls, definition: QueryDefinition) -> "QueryDescriptionResponse":
        return cls(
            name=definition.name,
            description=definition.description,
            shape=definition.shape.value,
            output_columns=[OutputColumnSchema(name=c.name, type=c.type.value) for c in definition.columns],
            parameters=[
                ParameterSchema(
                    name=p.name,
                    type=p.type.value,
                    required=p.required,
                    default=p.default,
                    minimum=p.minimum,
                    choices=list(p.choices) if p.choices is not None else None,
                    description=p.description,
                )
                for p in definition.parameters
            ],
        )


class ExecuteRequest(BaseModel):
    """Request body for POST /v1/queries/{name}/execute"""

    params: Dict[str, Any] = Field(default_factory=dict, description="Parameter values by name")


class ExecuteResponse(BaseModel):
    """Response for POST /v1/queries/{name}/execute"""

    query: str
    columns: List[str]
    rows: List[Dict[str, Any]]
    row_count: int
