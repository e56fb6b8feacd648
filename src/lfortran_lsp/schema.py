from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

DEFAULT_COMPILER_NAME = "lfortran"
DEFAULT_MAX_NUMBER_OF_PROBLEMS = 1000


class CompilerSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    lfortran_path: str = Field(
        DEFAULT_COMPILER_NAME,
        min_length=1,
        validation_alias=AliasChoices(
            "lfortranPath", "path", "executablePath", "lfortran_path"
        ),
    )
    timeout: Optional[float] = Field(None, gt=0)


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    max_number_of_problems: int = Field(
        DEFAULT_MAX_NUMBER_OF_PROBLEMS,
        ge=0,
        validation_alias=AliasChoices(
            "maxNumberOfProblems", "maxDiagnostics", "max_number_of_problems"
        ),
    )
    compiler: CompilerSettings = Field(default_factory=CompilerSettings)

    @model_validator(mode="before")
    @classmethod
    def _lift_compiler_path(cls, data: Any) -> Any:
        # Flat ``compilerPath`` is accepted alongside the nested table.
        if isinstance(data, dict) and "compilerPath" in data:
            data = dict(data)
            nested = data.get("compiler")
            compiler = dict(nested) if isinstance(nested, dict) else {}
            compiler.setdefault("lfortranPath", data.pop("compilerPath"))
            data["compiler"] = compiler
        return data


class DocumentSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    uri: str
    version: Optional[int] = None
    text: str
