import logging

from shared.log import GenericFormatter, LoggerSink, NullSink, log_transport_event


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


def _logger(name):
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handler = ListHandler()
    logger.handlers = [handler]
    return logger, handler


def test_logger_sink_levels_follow_code():
    logger, handler = _logger("tests.sink")
    sink = LoggerSink(logger)
    sink.log("recv failed: timed out", 11)
    sink.log("listening", 0)
    assert [r.levelno for r in handler.records] == [logging.WARNING, logging.INFO]
    assert handler.records[0].code == 11
    assert handler.records[0].getMessage() == "recv failed: timed out"


def test_null_sink_accepts_anything():
    NullSink().log("ignored", 99)


def test_transport_event_drops_missing_context():
    logger, handler = _logger("tests.event")
    log_transport_event(logger, "warning", "bind failed", fd=4, kind="ADDRESS_IN_USE", peer=None)
    record = handler.records[0]
    assert record.fd == 4
    assert record.kind == "ADDRESS_IN_USE"
    assert not hasattr(record, "peer")


def test_generic_formatter_prefixes_context():
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "connect failed", None, None)
    record.fd = 5
    record.kind = "CONNECTION_REFUSED"
    record.peer = "127.0.0.1:9"
    text = GenericFormatter("%(message)s").format(record)
    assert text == "[fd=5 kind=CONNECTION_REFUSED peer=127.0.0.1:9] connect failed"


def test_handle_failures_reach_sink():
    from shared.transport import ErrorKind, SocketHandle

    logger, handler = _logger("tests.handle")
    handle = SocketHandle.create(sink=LoggerSink(logger))
    assert handle.receive_stream(1).kind is ErrorKind.ILLEGAL_OPERATION
    assert len(handler.records) == 1
    assert "recv failed" in handler.records[0].getMessage()
    handle.release()


def test_formatting_does_not_mutate_record():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "bound", None, None)
    record.fd = 3
    formatter = GenericFormatter("%(message)s")
    assert formatter.format(record) == formatter.format(record) == "[fd=3] bound"
    assert record.msg == "bound"
