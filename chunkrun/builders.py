"""Factories that wire jobs from configuration.

Each component kind (source, transform, sink) has a registry mapping a
config `type` to a factory function taking the component's config section.
build_job() walks a JobConfig and returns a JobDef with every step bound
to freshly constructed components.

Custom components register the same way the built-ins do:

    from chunkrun.builders import sinks

    @sinks.register("postgres")
    def build_postgres_sink(section):
        ...
"""

from pathlib import Path
from typing import Any, Callable, Generic, TypeVar

from chunkrun.config import JobConfig, StepConfig
from chunkrun.errors import ConfigError
from chunkrun.schemas import JobDef, RecordSchema, RunIdIncrementer, SkipPolicy, StepDef
from chunkrun.sinks import InMemorySink, RecordSink, SqliteSink
from chunkrun.sources import DelimitedFileSource, RecordSource
from chunkrun import transforms as tx

T = TypeVar("T")
Factory = Callable[[dict[str, Any]], T]


class ComponentRegistry(Generic[T]):
    """Registry for building components by config type."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._factories: dict[str, Factory] = {}

    def register(self, type_name: str) -> Callable[[Factory], Factory]:
        """Decorator registering a factory for a config type.

        Args:
            type_name: Config type identifier (e.g., "csv")
        """
        def decorator(factory: Factory) -> Factory:
            self._factories[type_name] = factory
            return factory
        return decorator

    def build(self, section: dict[str, Any]) -> T:
        """Build a component from its config section.

        Raises:
            ConfigError: If the type is not registered or the section is invalid
        """
        type_name = section.get("type")
        if type_name not in self._factories:
            raise ConfigError(
                f"Unknown {self.kind} type: {type_name}. Registered: {self.list_types()}"
            )
        try:
            return self._factories[type_name](section)
        except (KeyError, ValueError, TypeError, OSError) as e:
            raise ConfigError(f"Invalid {self.kind} '{type_name}': {e}") from e

    def list_types(self) -> list[str]:
        """List registered types."""
        return sorted(self._factories.keys())


sources: ComponentRegistry[RecordSource] = ComponentRegistry("source")
transforms: ComponentRegistry[tx.Transformer] = ComponentRegistry("transform")
sinks: ComponentRegistry[RecordSink] = ComponentRegistry("sink")


@sources.register("csv")
def build_delimited_source(section: dict[str, Any]) -> RecordSource:
    if not section.get("fields"):
        raise ValueError("'fields' is required")
    return DelimitedFileSource(
        section["path"],
        RecordSchema.from_config(section["fields"]),
        delimiter=section.get("delimiter", ","),
        skip_header=section.get("skip_header", False),
        encoding=section.get("encoding", "utf-8"),
        strict=section.get("strict", True),
    )


@transforms.register("identity")
def build_identity(section: dict[str, Any]) -> tx.Transformer:
    return tx.identity()


@transforms.register("uppercase")
def build_uppercase(section: dict[str, Any]) -> tx.Transformer:
    return tx.uppercase(section["fields"])


@transforms.register("filter_blank")
def build_filter_blank(section: dict[str, Any]) -> tx.Transformer:
    return tx.filter_blank(section["fields"])


@transforms.register("chain")
def build_chain(section: dict[str, Any]) -> tx.Transformer:
    return tx.chain(*(transforms.build(s) for s in section["transforms"]))


@sinks.register("sqlite")
def build_sqlite_sink(section: dict[str, Any]) -> RecordSink:
    init_sql = section.get("init_sql")
    if section.get("init_sql_file"):
        init_sql = Path(section["init_sql_file"]).read_text()
    return SqliteSink(
        section["database"],
        section["sql"],
        init_sql=init_sql,
        timeout_s=section.get("timeout_s", 5.0),
    )


@sinks.register("memory")
def build_memory_sink(section: dict[str, Any]) -> RecordSink:
    return InMemorySink()


def build_step(step: StepConfig) -> StepDef:
    """Wire one step from its configuration."""
    return StepDef(
        name=step.name,
        source=sources.build(step.source),
        transformer=transforms.build(step.transform),
        sink=sinks.build(step.sink),
        chunk_size=step.chunk_size,
        skip_policy=SkipPolicy.from_dict(step.skip_policy),
        chunk_timeout_s=step.chunk_timeout_s,
    )


def build_job(config: JobConfig) -> JobDef:
    """Wire a JobDef from a validated JobConfig."""
    incrementer = RunIdIncrementer() if config.incrementer == "run_id" else None
    return JobDef(
        name=config.name,
        steps=tuple(build_step(s) for s in config.steps),
        incrementer=incrementer,
        restartable=config.restartable,
    )
