"""Configuration schema using Pydantic."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings

from cheapl import __version__


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class XplConfig(Base):
    """xPL bus configuration."""

    application_id: str = "cheapl-player.default"  # vendor-device.instance
    version: str = __version__
    broadcast_address: str = "255.255.255.255"
    hub_port: int = 3865
    bind_address: str = ""  # Empty = all interfaces
    discovery_period: float = Field(3.0, gt=0)  # Seconds between heartbeats while looking for a hub
    discovery_window: float = Field(120.0, gt=0)  # Total length of the discovery phase
    lonely_period: float = Field(30.0, gt=0)  # Seconds between heartbeats after discovery gave up
    heartbeat_period: float = Field(300.0, gt=0)  # Seconds between heartbeats once connected


class SoundsConfig(Base):
    """Sound playback configuration."""

    directory: str = "."  # Holds on<device>.wav / off<device>.wav
    device: str = ""  # Audio device name; empty = discard samples
    period_size: int = Field(128, gt=0)  # Frames per write


class Config(BaseSettings):
    """Root configuration for cheapl."""

    xpl: XplConfig = Field(default_factory=XplConfig)
    sounds: SoundsConfig = Field(default_factory=SoundsConfig)

    model_config = ConfigDict(env_prefix="CHEAPL_", env_nested_delimiter="__")
