"""Marshmallow schema for gateway configuration validation."""

from __future__ import annotations

from typing import Any, Dict

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    post_load,
    pre_load,
    validate,
    validates_schema,
)

from ..const import (
    DEFAULT_CLIENT_CERTIFICATE,
    DEFAULT_CLIENT_PRIVATE_KEY,
    DEFAULT_DATATYPE,
    DEFAULT_EXPORTER_HOST,
    DEFAULT_EXPORTER_PORT,
    DEFAULT_MQTT_HOST,
    DEFAULT_MQTT_PORT,
    DEFAULT_OPERATION_TIMEOUT,
    METRIC_MODES,
    MODE_PUB,
    MODE_PUBSUB,
    NUMERIC_DATATYPES,
)
from .model import MetricDescriptor, RuntimeConfig

_OPTIONAL_SECTIONS = ("logging", "exporter")
_WILDCARDS = ("+", "#")


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    candidate = value.strip()
    return candidate or None


class MetricSchema(Schema):
    """One ``[[metrics]]`` entry."""

    class Meta:
        unknown = EXCLUDE

    node_id = fields.Str(required=True, data_key="nodeId", validate=validate.Length(min=1))
    topic = fields.Str(required=True, validate=validate.Length(min=1))
    mode = fields.Str(required=True, validate=validate.OneOf(METRIC_MODES))
    interval = fields.Float(
        load_default=None,
        allow_none=True,
        validate=validate.Range(min=0, min_inclusive=False),
    )
    datatype = fields.Str(
        load_default=DEFAULT_DATATYPE,
        validate=validate.OneOf(sorted(NUMERIC_DATATYPES)),
    )

    @validates_schema
    def validate_interval(self, data: Dict[str, Any], **kwargs: Any) -> None:
        if data["mode"] in (MODE_PUB, MODE_PUBSUB) and data.get("interval") is None:
            raise ValidationError(
                "interval is required when mode includes pub",
                field_name="interval",
            )

    @validates_schema
    def validate_topic(self, data: Dict[str, Any], **kwargs: Any) -> None:
        topic = data["topic"]
        if any(wildcard in topic for wildcard in _WILDCARDS):
            raise ValidationError(
                f"topic '{topic}' must not contain MQTT wildcards",
                field_name="topic",
            )

    @post_load
    def make_metric(self, data: Dict[str, Any], **kwargs: Any) -> MetricDescriptor:
        data["node_id"] = data["node_id"].strip()
        if not data["node_id"]:
            raise ValidationError("nodeId must not be blank", field_name="nodeId")
        return MetricDescriptor(**data)


class OpcuaSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    url = fields.Str(required=True, validate=validate.Length(min=1))
    certificate = fields.Str(load_default=DEFAULT_CLIENT_CERTIFICATE, validate=validate.Length(min=1))
    private_key = fields.Str(load_default=DEFAULT_CLIENT_PRIVATE_KEY, validate=validate.Length(min=1))
    username = fields.Str(load_default=None, allow_none=True)
    password = fields.Str(load_default=None, allow_none=True)
    operation_timeout = fields.Float(
        load_default=DEFAULT_OPERATION_TIMEOUT,
        validate=validate.Range(min=0, min_inclusive=False),
    )


class MqttSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    host = fields.Str(load_default=DEFAULT_MQTT_HOST, validate=validate.Length(min=1))
    port = fields.Int(load_default=DEFAULT_MQTT_PORT, validate=validate.Range(min=1, max=65535))
    username = fields.Str(load_default=None, allow_none=True)
    password = fields.Str(load_default=None, allow_none=True)
    client_id = fields.Str(load_default=None, allow_none=True)
    tls = fields.Bool(load_default=False)
    cafile = fields.Str(load_default=None, allow_none=True)
    certfile = fields.Str(load_default=None, allow_none=True)
    keyfile = fields.Str(load_default=None, allow_none=True)
    tls_insecure = fields.Bool(load_default=False)

    @validates_schema
    def validate_client_cert_pair(self, data: Dict[str, Any], **kwargs: Any) -> None:
        certfile = _blank_to_none(data.get("certfile"))
        keyfile = _blank_to_none(data.get("keyfile"))
        if bool(certfile) != bool(keyfile):
            raise ValidationError(
                "certfile and keyfile must be provided together for mTLS",
                field_name="certfile",
            )


class LoggingSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    debug = fields.Bool(load_default=False)


class ExporterSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    enabled = fields.Bool(load_default=False)
    host = fields.Str(load_default=DEFAULT_EXPORTER_HOST)
    port = fields.Int(load_default=DEFAULT_EXPORTER_PORT, validate=validate.Range(min=0, max=65535))


class GatewayConfigSchema(Schema):
    """Declarative validation schema for the gateway configuration file."""

    class Meta:
        unknown = EXCLUDE

    opcua = fields.Nested(OpcuaSchema, required=True)
    mqtt = fields.Nested(MqttSchema, required=True)
    logging = fields.Nested(LoggingSchema, required=True)
    exporter = fields.Nested(ExporterSchema, required=True)
    metrics = fields.List(fields.Nested(MetricSchema), required=True)

    @pre_load
    def fill_optional_sections(self, data: Any, **kwargs: Any) -> Any:
        # Absent optional tables still go through their schema so defaults apply.
        if isinstance(data, dict):
            data = dict(data)
            for section in _OPTIONAL_SECTIONS:
                data.setdefault(section, {})
        return data

    @post_load
    def make_config(self, data: Dict[str, Any], **kwargs: Any) -> RuntimeConfig:
        opcua = data["opcua"]
        mqtt = data["mqtt"]
        exporter = data["exporter"]
        return RuntimeConfig(
            opcua_url=opcua["url"].strip(),
            metrics=tuple(data["metrics"]),
            opcua_certificate=opcua["certificate"],
            opcua_private_key=opcua["private_key"],
            opcua_username=_blank_to_none(opcua["username"]),
            opcua_password=_blank_to_none(opcua["password"]),
            operation_timeout=opcua["operation_timeout"],
            mqtt_host=mqtt["host"],
            mqtt_port=mqtt["port"],
            mqtt_user=_blank_to_none(mqtt["username"]),
            mqtt_pass=_blank_to_none(mqtt["password"]),
            mqtt_client_id=_blank_to_none(mqtt["client_id"]),
            mqtt_tls=mqtt["tls"],
            mqtt_cafile=_blank_to_none(mqtt["cafile"]),
            mqtt_certfile=_blank_to_none(mqtt["certfile"]),
            mqtt_keyfile=_blank_to_none(mqtt["keyfile"]),
            mqtt_tls_insecure=mqtt["tls_insecure"],
            debug_logging=data["logging"]["debug"],
            exporter_enabled=exporter["enabled"],
            exporter_host=exporter["host"],
            exporter_port=exporter["port"],
        )
