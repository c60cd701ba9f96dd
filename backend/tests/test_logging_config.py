import json
import logging

import pytest

from sigex.core.logging_config import (
    GELFFormatter,
    clear_expediente_context,
    get_expediente_context,
    set_expediente_context
)


@pytest.fixture(autouse=True)
def clean_context():
    clear_expediente_context()
    yield
    clear_expediente_context()


def make_record(message="Documento firmado", level=logging.INFO, **extra):
    record = logging.LogRecord("sigex.test", level, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestExpedienteContext:

    def test_set_only_overrides_given_fields(self):
        set_expediente_context(user_id="jperez", expediente_id="exp-1")
        set_expediente_context(oficina_id="MESA")

        assert get_expediente_context() == {
            "user_id": "jperez",
            "expediente_id": "exp-1",
            "oficina_id": "MESA",
            "certificate_serial": None,
        }

    def test_clear(self):
        set_expediente_context(certificate_serial="0A1B")
        clear_expediente_context()
        assert not any(get_expediente_context().values())


class TestGELFFormatter:

    def test_message_carries_context_and_extras(self):
        set_expediente_context(user_id="jperez", expediente_id="exp-1")
        formatter = GELFFormatter(container_name="sigex-backend")

        payload = json.loads(formatter.format(make_record(documento_id="doc-7", unrelated="x")))

        assert payload["version"] == "1.1"
        assert payload["short_message"] == "Documento firmado"
        assert payload["level"] == 6
        assert payload["facility"] == "sigex"
        assert payload["_user_id"] == "jperez"
        assert payload["_expediente_id"] == "exp-1"
        assert payload["_documento_id"] == "doc-7"
        assert payload["_container_name"] == "sigex-backend"
        assert "_unrelated" not in payload
        assert "_oficina_id" not in payload

    def test_levels_map_to_syslog_severity(self):
        formatter = GELFFormatter()
        assert formatter.to_gelf(make_record(level=logging.ERROR))["level"] == 3
        assert formatter.to_gelf(make_record(level=logging.WARNING))["level"] == 4
