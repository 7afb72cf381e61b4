from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import loguru._logger

from ..exceptions import RequestValidationError
from ..schemas.health import ExportType, HealthSnapshot, SnapshotMode, TestResult
from ..utils.export import ExportFormatter
from ..utils.log_common import build_logger
from .manager import HealthAggregator, component_health_score
from .runner import TestRunner


class ResponseCode(str, Enum):
    OK = "OK"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TIMEOUT = "TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class ServiceResponse:
    """
    Transport-independent answer to a health or test request.

    ``body`` is a HealthSnapshot, a TestResult, export bytes, or an error
    payload (``{"error", "message", "errors"}``) for the two error codes.
    """

    code: ResponseCode
    body: Any
    content_type: str = "application/json"
    filename: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.code in (ResponseCode.OK, ResponseCode.TIMEOUT)


def _error(code: ResponseCode, message: str, errors: Optional[List[Any]] = None) -> ServiceResponse:
    return ServiceResponse(
        code=code,
        body={"error": code.value, "message": message, "errors": errors or []},
    )


class HealthService:
    """
    The operations offered to dashboards and CLIs.

    Component degradation is returned as data with ``OK``; a snapshot with a
    timed-out probe or a timed-out test is returned with ``TIMEOUT``. Only
    malformed requests (``VALIDATION_ERROR``) and faults in the engine itself
    (``INTERNAL_ERROR``) are reported as errors.
    """

    def __init__(
        self,
        aggregator: HealthAggregator,
        runner: TestRunner,
        formatter: Optional[ExportFormatter] = None,
        logger: Optional[loguru._logger.Logger] = None,
    ):
        self.aggregator = aggregator
        self.runner = runner
        self.formatter = formatter or ExportFormatter()
        self.logger = logger or build_logger("service")

    async def health(
        self,
        mode: Union[SnapshotMode, str] = SnapshotMode.QUICK,
        force: bool = False,
        export_format: Optional[Union[ExportType, str]] = None,
    ) -> ServiceResponse:
        try:
            mode = self._parse(SnapshotMode, mode, "mode")
            if not isinstance(force, bool):
                raise RequestValidationError(f"force must be a boolean, got {force!r}")
            if export_format is not None:
                export_format = self._parse(ExportType, export_format, "format")
        except RequestValidationError as e:
            return _error(ResponseCode.VALIDATION_ERROR, e.message, e.errors)

        try:
            snapshot: HealthSnapshot = await self.aggregator.get_snapshot(mode, force=force)
            code = ResponseCode.TIMEOUT if snapshot.partial else ResponseCode.OK
            if export_format is None:
                return ServiceResponse(code=code, body=snapshot)
            return ServiceResponse(
                code=code,
                body=self.formatter.format(snapshot, export_format),
                content_type=self.formatter.content_type(export_format),
                filename=self.formatter.filename(snapshot, export_format),
            )
        except RequestValidationError as e:
            return _error(ResponseCode.VALIDATION_ERROR, e.message, e.errors)
        except Exception as e:
            self.logger.exception(f"health snapshot failed: {e}")
            return _error(ResponseCode.INTERNAL_ERROR, f"health snapshot failed: {e}")

    async def test(
        self,
        component_name: str,
        test_type: str,
        custom_query: Optional[str] = None,
    ) -> ServiceResponse:
        request: Dict[str, Any] = {"component_name": component_name, "test_type": test_type}
        if custom_query is not None:
            request["custom_query"] = custom_query

        try:
            result: TestResult = await self.runner.run_test(request)
        except RequestValidationError as e:
            self.logger.info(f"rejected test request for '{component_name}': {e.message}")
            return _error(ResponseCode.VALIDATION_ERROR, e.message, e.errors)
        except Exception as e:
            self.logger.exception(f"test execution failed: {e}")
            return _error(ResponseCode.INTERNAL_ERROR, f"test execution failed: {e}")

        code = ResponseCode.TIMEOUT if result.timed_out else ResponseCode.OK
        return ServiceResponse(code=code, body=result)

    def components(self) -> List[Dict[str, Any]]:
        """Registered components with their probe kind and quick-mode membership."""
        items = []
        for name in self.aggregator.probe_names:
            probe = self.aggregator.get_probe(name)
            items.append(
                {
                    "component_name": name,
                    "kind": probe.kind.value,
                    "dependencies": list(probe.dependencies),
                    "quick": name in self.aggregator.quick_probes,
                    "testable": name in self.runner.components,
                }
            )
        return items

    async def component(self, name: str, detailed: bool = False) -> ServiceResponse:
        """
        One component from the full snapshot plus its own ``health_score``.

        ``name`` matches a component name exactly or, case-insensitively, a
        part of a component name or subsystem title. With ``detailed`` the
        subsystem's count metrics are fetched as well.
        """
        try:
            if not isinstance(name, str) or not name.strip():
                raise RequestValidationError("component name is required")
            if not isinstance(detailed, bool):
                raise RequestValidationError(f"detailed must be a boolean, got {detailed!r}")
            resolved = self._resolve_component(name.strip())
        except RequestValidationError as e:
            return _error(ResponseCode.VALIDATION_ERROR, e.message, e.errors)

        try:
            snapshot = await self.aggregator.get_snapshot(SnapshotMode.FULL)
            health = snapshot.component(resolved)
            if health is None:
                raise RuntimeError(f"component '{resolved}' missing from the full snapshot")

            body = health.model_dump(mode="json")
            body["health_score"] = component_health_score(health)
            probe = self.aggregator.get_probe(resolved)
            if detailed and hasattr(probe, "detailed_metrics"):
                body["detailed_metrics"] = await probe.detailed_metrics()
        except Exception as e:
            self.logger.exception(f"component lookup for '{resolved}' failed: {e}")
            return _error(ResponseCode.INTERNAL_ERROR, f"component lookup failed: {e}")

        code = ResponseCode.TIMEOUT if health.indeterminate else ResponseCode.OK
        return ServiceResponse(code=code, body=body)

    def _resolve_component(self, name: str) -> str:
        names = self.aggregator.probe_names
        if name in names:
            return name
        needle = name.lower()
        for candidate in names:
            subsystem = getattr(self.aggregator.get_probe(candidate), "subsystem", None)
            title = subsystem.title.lower() if subsystem is not None else ""
            if needle in candidate.lower() or needle in title:
                return candidate
        raise RequestValidationError(
            f"unknown component '{name}', expected one of: {', '.join(sorted(names))}",
            errors=[{"loc": ["name"], "msg": "unknown component"}],
        )

    @staticmethod
    def _parse(enum_cls, value, field: str):
        try:
            return enum_cls(value)
        except ValueError:
            valid = ", ".join(m.value for m in enum_cls)
            raise RequestValidationError(
                f"invalid {field} '{value}', expected one of: {valid}",
                errors=[{"loc": [field], "msg": f"expected one of: {valid}"}],
            )
