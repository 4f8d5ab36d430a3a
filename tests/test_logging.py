import logging

from backoffice.core.config import Settings
from backoffice.core.logging import configure_logging, init_tracer, parse_pairs, span_attributes


def test_parse_pairs_skips_malformed_items():
    assert parse_pairs("authorization=Bearer abc, x-team = support,broken,=nokey") == {
        "authorization": "Bearer abc",
        "x-team": "support",
    }
    assert parse_pairs(None) == {}


def test_configure_logging_applies_overrides():
    settings = Settings(log_level="debug", log_levels="backoffice.test.quiet=ERROR,backoffice.test.bogus=LOUD")

    logger = configure_logging(settings)

    assert logger.name == "backoffice"
    assert logger.level == logging.DEBUG
    assert logging.getLogger("backoffice.test.quiet").level == logging.ERROR
    assert logging.getLogger("backoffice.test.bogus").level == logging.WARNING


def test_tracer_is_disabled_by_default():
    assert init_tracer(Settings(otel_enabled=False)) is None


def test_span_attributes_drop_missing_values():
    assert span_attributes(ticket_id="t-1", user_id=None) == {"backoffice.ticket_id": "t-1"}
