"""
Test Case Data Model
"""
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


Platform = Literal["web", "android", "ios"]
StepType = Literal["action", "query", "assert", "input"]
CaseStatus = Literal["idle", "running", "done", "error"]


class WireModel(BaseModel):
    """Base model serialized with camelCase keys on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class Step(WireModel):
    """A single natural-language step of a test case."""

    id: str = Field(..., description="Step id")
    action: str = Field(default="", description="Instruction text")
    type: Optional[StepType] = Field(default=None, description="action/query/assert/input")


class TestCase(WireModel):
    """Data model for a test case."""

    __test__ = False

    id: str = Field(..., description="Unique test case ID")
    name: str = Field(default="", description="Test case name")
    description: str = Field(default="", description="Test description")
    platform: Platform = Field(default="web", description="Target platform")
    context: Optional[str] = Field(default=None, description="Free-form context, e.g. JSON with bundleId")
    steps: List[Step] = Field(default_factory=list, description="Ordered test steps")
    status: CaseStatus = Field(default="idle", description="Projection of the latest execution")
    last_run_at: Optional[int] = Field(default=None, description="Epoch ms of last finished run")
    last_report_path: Optional[str] = Field(default=None, description="Basename of last report")

    @property
    def is_mobile(self) -> bool:
        return self.platform in ("android", "ios")
