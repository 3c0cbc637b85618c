from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, model_validator

from classrecon.core.types.model import RttiVendor

DYNAMIC_CAST_SIGNATURE = (
    "void * __dynamic_cast(void * src_ptr, __class_type_info * src_type, "
    "__class_type_info * dst_type, ptrdiff_t src2dst)"
)


class AnalysisConfig(BaseModel):
    """Target ABI settings."""

    vendor: RttiVendor = RttiVendor.ITANIUM
    pointer_size: int = 8
    image_base: int = 0


class LayoutConfig(BaseModel):
    """Layout builder settings."""

    enabled: bool = True
    vfptr_name: str = "_vfptr"
    vbptr_name: str = "_vbptr"
    super_prefix: str = "super_"


class AttributionConfig(BaseModel):
    """Constructor/destructor attribution settings."""

    enabled: bool = True
    # Calls excluded from the end of a destructor before the base window.
    destructor_tail_skip: int = 1
    require_default_names: bool = True


class DynamicCastConfig(BaseModel):
    """Dynamic-cast signature recovery settings."""

    enabled: bool = True
    entry_point: str = "__dynamic_cast"
    formal_signature: str = DYNAMIC_CAST_SIGNATURE
    override_name: str = "tmpname"
    name_root: str = "prt"
    category: str = "/auto_proto"


class ArchiveConfig(BaseModel):
    """On-disk archive of recovered class models."""

    enabled: bool = False
    directory: str = ".classrecon/archive"


class ReconConfig(BaseModel):
    """Top-level classrecon configuration."""

    analysis: AnalysisConfig = AnalysisConfig()
    layout: LayoutConfig = LayoutConfig()
    attribution: AttributionConfig = AttributionConfig()
    dynamic_cast: DynamicCastConfig = DynamicCastConfig()
    archive: ArchiveConfig = ArchiveConfig()
    verbose: bool = False
    show_report: bool = False

    @model_validator(mode="after")
    def _check_abi(self) -> "ReconConfig":
        if self.analysis.pointer_size not in (4, 8):
            raise ValueError(f"pointer_size must be 4 or 8, got {self.analysis.pointer_size}")
        if self.attribution.destructor_tail_skip < 0:
            raise ValueError("destructor_tail_skip must not be negative")
        return self


def load_config(path: Optional[str] = None) -> ReconConfig:
    """Load configuration from a classrecon.toml file, falling back to defaults.

    Uses ``tomllib`` on Python 3.11+ and ``tomli`` on older versions.
    """

    if sys.version_info >= (3, 11):
        import tomllib
    else:
        try:
            import tomli as tomllib  # type: ignore[no-redef]
        except ImportError:
            # If tomli is not installed and we are on an older Python, just
            # return defaults when no explicit path is given.
            if path is None:
                return ReconConfig()
            raise

    config_path = Path(path) if path else Path("classrecon.toml")

    if not config_path.exists():
        return ReconConfig()

    with open(config_path, "rb") as f:
        raw = tomllib.load(f)

    return ReconConfig(**raw)
