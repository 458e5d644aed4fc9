"""Application configuration using Pydantic Settings."""
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # App settings
    app_name: str = "Journey Builder"
    debug: bool = False

    # Persistence
    storage_backend: Literal["file", "supabase"] = "file"
    storage_dir: str = ".journeys"
    journey_id: str = "default"

    # Supabase Configuration (only used when storage_backend == "supabase")
    supabase_url: str = ""
    supabase_service_key: str = ""
    journeys_table: str = "journeys"

    # Debounce window for saving after edits, mirrors the editor's autosave
    persistence_debounce_ms: int = 150

    # Import / export
    export_version: str = "1.0"

    # ==========================================================================
    # AUTO-LAYOUT
    # Spacing values are in canvas units and match the editor defaults
    # ==========================================================================

    layout_direction: Literal["RIGHT", "DOWN"] = "RIGHT"
    layout_node_spacing: float = 40
    layout_layer_spacing: float = 80
    layout_default_node_width: float = 160
    layout_default_node_height: float = 80

    # Minimum separation between the two branch targets of a success/error
    # or yes/no node after placement
    layout_branch_min_gap: float = 140

    # Upper bound on re-running placement until branch port order agrees
    # with the positions it produced
    layout_max_port_refinements: int = 4

    def supabase_configured(self) -> bool:
        """Check if Supabase credentials are present."""
        return bool(self.supabase_url and self.supabase_service_key)

    def debounce_seconds(self) -> float:
        """Autosave debounce window in seconds."""
        return max(self.persistence_debounce_ms, 0) / 1000.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
