"""
Pydantic schemas for zoom requests.

A request names a recording, its source playlist, one or more zoom
regions and where the results go. Two payload shapes are accepted:

- a `zooms` list of {start, end, x, y, zoom}
- the single-region fields zoomStart/zoomEnd/zoomCenterX/zoomCenterY

Both become the same list of ZoomRegion; the single-region shape is just a
one-element list.

Example usage:
    from hls_zoom.schemas.zoom_request import parse_zoom_request

    request = parse_zoom_request(event)
    regions = request.regions()
"""

import json
import re
from typing import Any, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..tasks.compositor.errors import ValidationError
from ..tasks.compositor.resolver import DEFAULT_MAGNIFICATION, ZoomRegion

QualityMode = Literal["reduced", "native"]

# Recording ids name scratch directories and output files
RECORDING_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")

SINGLE_REGION_FIELDS = ("zoomStart", "zoomEnd", "zoomCenterX", "zoomCenterY", "zoomLevel")


class ZoomSpec(BaseModel):
    """One zoom region as sent by the caller."""

    start: float = Field(..., ge=0, description="Window start in seconds")
    end: float = Field(..., ge=0, description="Window end in seconds")
    x: float = Field(default=0.5, ge=0, le=1, description="Focus point, fraction of width")
    y: float = Field(default=0.5, ge=0, le=1, description="Focus point, fraction of height")
    zoom: float = Field(default=DEFAULT_MAGNIFICATION, gt=1, le=10, description="Peak zoom factor")

    def to_region(self) -> ZoomRegion:
        return ZoomRegion(
            start=self.start,
            end=self.end,
            center_x=self.x,
            center_y=self.y,
            magnification=self.zoom,
        )


class ZoomRequest(BaseModel):
    """A validated zoom request."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    recording_id: str = Field(
        ...,
        validation_alias=AliasChoices("recordingId", "recording_id"),
    )
    manifest_reference: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("manifestReference", "manifestFileUrl", "manifest_reference"),
    )
    zooms: List[ZoomSpec] = Field(default_factory=list)
    quality: QualityMode = "native"
    output_location: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("outputLocation", "outputS3Prefix", "output_location"),
    )
    export_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("exportKey", "exportFileKey", "export_key"),
    )
    callback_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("callbackLocation", "callbackUrl", "callback_url"),
    )

    @model_validator(mode="before")
    @classmethod
    def _normalize_shapes(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        single = {key: data.pop(key) for key in SINGLE_REGION_FIELDS if key in data}
        if single:
            if "zooms" in data:
                raise ValueError("Use either 'zooms' or the single-region zoom fields, not both")
            spec = {"start": single.get("zoomStart"), "end": single.get("zoomEnd")}
            for source, target in (("zoomCenterX", "x"), ("zoomCenterY", "y"), ("zoomLevel", "zoom")):
                if single.get(source) is not None:
                    spec[target] = single[source]
            data["zooms"] = [spec]

        if "lowQuality" in data and "quality" not in data:
            low = data.pop("lowQuality")
            if isinstance(low, str):
                low = low.strip().lower() in ("true", "1", "yes")
            data["quality"] = "reduced" if low else "native"

        return data

    @model_validator(mode="after")
    def _check_fields(self) -> "ZoomRequest":
        if not RECORDING_ID_PATTERN.match(self.recording_id):
            raise ValueError(
                "recordingId must be 1-128 characters of letters, digits, '.', '_' or '-'"
            )
        return self

    def regions(self) -> List[ZoomRegion]:
        return [spec.to_region() for spec in self.zooms]


def parse_zoom_request(raw: Union[dict, str, bytes], require_zooms: bool = True) -> ZoomRequest:
    """
    Validate a request payload.

    Accepts the request itself, its JSON text, or an envelope whose
    `body` holds the JSON text. Export-only requests pass
    require_zooms=False.

    Raises:
        ValidationError: With every field problem in the message
    """
    try:
        if isinstance(raw, (str, bytes)):
            raw = json.loads(raw)
        if isinstance(raw, dict) and isinstance(raw.get("body"), (str, bytes)):
            raw = json.loads(raw["body"])
    except json.JSONDecodeError as e:
        raise ValidationError(f"Request body is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise ValidationError("Request must be a JSON object")

    try:
        request = ZoomRequest.model_validate(raw)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid zoom request: {problems}") from e

    if require_zooms and not request.zooms:
        raise ValidationError("Invalid zoom request: no zoom regions given")
    return request
