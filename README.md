# millstream

Building blocks for applications that work with message streams.

## What is inside

- **`millstream.log`**: a logging interface, `LoggerAdapter`, with the
  methods `error(msg, err, fields)`, `info`, `debug`, `trace` and
  `with_fields(fields)`. Three implementations:
  - `NopLogger` discards everything;
  - `StdLoggerAdapter`, built with `new_std_logger(debug, trace)` (standard
    error) or `new_std_logger_with_out(out, debug, trace)`, writes lines such
    as `level=INFO  msg="started" port=8080` with fields sorted by key,
    values containing spaces quoted and `None` shown as `<nil>`; debug and
    trace lines are written only when enabled;
  - `CaptureLoggerAdapter` keeps every entry as a `CapturedMessage`, grouped
    by `LogLevel`, and answers `captured()`, `has(message)` and
    `has_error(exc)`.

  Fields are kept in `LogFields`, a `dict` with `add(...)` and `copy()`.
- **`millstream.naming`**: `struct_name(value)` returns the value's own
  string form if its type defines `__str__`, otherwise `module.TypeName`.
- **`millstream.publisher`**: `RetryPublisher` wraps any object with
  `publish(topic, *messages)` and `close()`. Each message is retried on its
  own, up to `max_retries` times, waiting `time_to_first_retry` seconds and
  doubling the wait after every failure (`RetryPublisherConfig`). Messages
  that still fail are raised together as a `CouldNotPublishError`, whose
  `reasons()` maps each message's `uuid` to its error.
- **`millstream.multiplier`**: `Multiplier(constructor, subscribers_count)`
  creates that many subscribers, subscribes each of them to a topic and
  returns one iterator over all their messages; `close()` closes them all.
- **`millstream.requestreply`**: the shared types `Reply`,
  `ReplyTimeoutError`, `ReplyUnmarshalError`, `CommandHandlerError`,
  `BackendListenForNotificationsParams` and
  `BackendOnCommandProcessedParams`.
- **`millstream.pubsub_backend`**: `PubSubBackend`, configured with a
  `PubSubBackendConfig`, publishes a reply message after a command was
  handled (`on_command_processed`) and listens for replies tagged with the
  command's operation id (`listen_for_notifications`). The returned stream
  has `get(timeout=None)` and can be iterated; it ends after cancellation,
  after `listen_for_reply_timeout` seconds or when the subscriber stops, each
  time delivering a `Reply` carrying a `ReplyTimeoutError` first.
- **`millstream.command_bus`**: `send_with_replies(bus, backend, cmd)`
  sends a command and returns `(replies, cancel)`; `send_with_reply(...)`
  blocks until the first reply. Both take an optional `cancelled` object
  with an `is_set()` method, such as a `threading.Event`.

## Retrying a publisher

```python
from millstream.log import NopLogger
from millstream.publisher import CouldNotPublishError, RetryPublisher, RetryPublisherConfig

retrying = RetryPublisher(inner_publisher, RetryPublisherConfig(max_retries=5, logger=NopLogger()))

try:
    retrying.publish("orders", message)
except CouldNotPublishError as exc:
    for uuid, reason in exc.reasons().items():
        print(uuid, reason)
```

## Capturing logs in tests

```python
from millstream.log import CaptureLoggerAdapter, LogFields

logger = CaptureLoggerAdapter().with_fields(LogFields({"service": "billing"}))
logger.info("started", LogFields({"port": "8080"}))
print(logger.captured())
```

## What the package does not provide

millstream has no message type, no publisher or subscriber for any broker
(not even an in-memory one), no router, no command bus and no reply
marshaler. You supply them:

- messages need a `uuid`, a `metadata` dict and an `ack()` method;
- subscribers need `subscribe(topic)` returning an iterable of messages, and
  `close()`;
- the command bus passed to `send_with_replies` needs
  `send_with_modified_message(cmd, modify)`, calling `modify(message)` on
  the outgoing message;
- the marshaler given to `PubSubBackend` needs `marshal_reply(params)`,
  returning a message, and `unmarshal_reply(message)`, returning a `Reply`.

## Maintenance commands

Three commands come with the package for repositories that hold many nested
Go example modules:

```
millstream-consolidate-gomods [ROOT]
millstream-update-examples-deps [ROOT]
millstream-validate-examples [ROOT]
```

- `millstream-consolidate-gomods` (default root `.`) prints the lines of
  every nested `go.mod` except its `module` and `go` lines, each section
  headed by a `// <path>` comment, and deletes those nested files. The
  `go.mod` at the root itself is left alone and paths under `/vendor/` are
  skipped.
- `millstream-update-examples-deps` (default root `.`) runs, five modules at
  a time, `go get -u ./...`, then `go get -u <enclosing module>@v1.2.0-rc.11`
  for the module enclosing the nested one, then `go mod tidy -go=1.21`. It
  needs the `go` tool on the path.
- `millstream-validate-examples` (default root `../..`) finds every
  `.validate_example*.yml`, runs its `validation_cmd` in that directory and
  waits up to `timeout` seconds for a line of output matching the regular
  expression `expected_output`; `teardown_cmd`, if set, runs afterwards. The
  first failing example stops the run with an error.

## Running the tests

```
pip install -e ".[test]"
pytest
```