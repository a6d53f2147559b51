"""
Pydantic schemas for the Grafana webhook body.

Decoding follows Grafana's legacy alert notification JSON:

    {
      "state": "alerting",
      "title": "[Alerting] CPU high",
      "message": "CPU above 90% for 5m",
      "ruleUrl": "https://grafana.example.com/d/abc?editPanel=2",
      "imageUrl": "https://grafana.example.com/render/abc.png",
      "evalMatches": [{"metric": "cpu", "value": 93.4, "tags": {}}]
    }

Missing keys and JSON ``null`` fall back to the field default; unknown
keys are ignored.  Types are checked strictly: a numeric ``title``, a
string ``"0.5"`` or a boolean metric value are errors, while integers are
accepted for float fields.
"""

from __future__ import annotations

from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class _GrafanaModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, strict=True)

    @field_validator("*", mode="before")
    @classmethod
    def _null_as_default(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return v


class EvalMatch(_GrafanaModel):
    """One metric/value pair that triggered the rule."""

    metric: str = Field("", examples=["cpu"])
    value: float = Field(0.0, examples=[93.4])


class WebhookAlert(_GrafanaModel):
    """Grafana alert notification payload."""

    state: str = Field("", examples=["alerting"])
    title: str = Field("", examples=["[Alerting] CPU high"])
    message: str = Field("", examples=["CPU above 90% for 5m"])
    image_url: str = Field("", alias="imageUrl")
    rule_url: str = Field("", alias="ruleUrl")
    eval_matches: List[EvalMatch] = Field(default_factory=list, alias="evalMatches")
