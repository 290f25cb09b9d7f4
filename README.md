# numaudf

Building blocks for writing user-defined functions for a streaming
pipeline: sources, sinks, source transformers and side-input retrievers.
Each kind of function has its own module holding the message types, the
interface to implement, a settings record and a `Service` that drives the
request/response protocol over a stream object.

The package has no dependencies outside the standard library.

## Modules

| Module | What it provides |
| --- | --- |
| `numaudf.sourcer` | `Sourcer` interface, `Message`, `Offset`, `ReadRequest`, `AckRequest`, `default_partitions()`, `new_offset_with_default_partition_id()`, and the `Service` with `read_fn`, `ack_fn`, `pending_fn`, `partitions_fn` and `is_ready` |
| `numaudf.sinker` | `Sinker` interface, `Datum`, `Response` with `response_ok`, `response_failure`, `response_fallback`, and the `Service` with `sink_fn` and `is_ready` |
| `numaudf.sourcetransformer` | `SourceTransformer` interface, `Datum`, `Message` (with event time), `message_to_drop`, `TransformError`, and the `Service` with `source_transform_fn` and `is_ready` |
| `numaudf.sideinput` | `SideInputRetriever` interface, `broadcast_message`, `no_broadcast_message`, and the `Service` with `retrieve_side_input` and `is_ready` |
| `numaudf.streaming` | What the services share: the `ServerStream` protocol, `Handshake`, `EndOfStream` and `receive` |
| `numaudf.simple_source` | `SimpleSource`, a counting source that refuses a new batch until the last one is acknowledged |
| `numaudf.sideinput_source` | `SideInputSource`, a source whose messages are the values handed to its `push` method |
| `numaudf.event_time_filter` | `filter_event_time`, a transform that drops data before 2022 and snaps later event times to the start of 2022 or 2023 |
| `numaudf.examples` | `LogSink`, `FallbackSink`, `EvenOddRetriever`, `CounterRetriever`, `E2EEvenOddRetriever`, `TimestampRetriever` and `AssignEventTime` |

`numaudf.sideinput`, `numaudf.sinker`, `numaudf.sourcer` and
`numaudf.sourcetransformer` each have an `Options` dataclass and
`default_options()` holding the socket address, the maximum message size
(64 MiB) and the server-info file path for that kind of function. For the
sink, `default_options()` returns the fallback-sink paths when the
environment variable `NUMAFLOW_UD_CONTAINER_TYPE` is `fb-udsink`.

## Writing a sink

Implement `Sinker.sink`: it receives the datums of one batch as an iterable
and returns one response per datum. A plain function taking the datums
works too.

```python
from numaudf.sinker import Sinker, response_failure, response_ok


class PrintSink(Sinker):
    def sink(self, datums):
        responses = []
        for datum in datums:
            if b"err" in datum.value:
                responses.append(response_failure(datum.id, "bad payload"))
            else:
                print(datum.value.decode())
                responses.append(response_ok(datum.id))
        return responses
```

Use `response_fallback(id)` to route a message to the fallback sink instead.

## Driving a service

A service talks to any object with `recv()` and `send(response)`: `recv`
returns the next request and raises `numaudf.streaming.EndOfStream` once the
client is done. A stream may also carry a `cancelled` attribute holding a
`threading.Event`; the services stop receiving once it is set. Every
streaming call starts with a handshake request carrying `Handshake(sot=True)`.

```python
from numaudf.sinker import Service, SinkDatumRequest, SinkRequest, TransmissionStatus
from numaudf.streaming import EndOfStream, Handshake


class ListStream:
    def __init__(self, requests):
        self._requests = iter(requests)
        self.sent = []

    def recv(self):
        try:
            return next(self._requests)
        except StopIteration:
            raise EndOfStream from None

    def send(self, response):
        self.sent.append(response)


stream = ListStream([
    SinkRequest(handshake=Handshake(sot=True)),
    SinkRequest(request=SinkDatumRequest(id="one", value=b"10")),
    SinkRequest(status=TransmissionStatus(eot=True)),
])
Service(PrintSink()).sink_fn(stream)
print(stream.sent[1].results)  # [SinkResult(id='one', status=<Status.SUCCESS: 0>, err_msg='')]
```

When a user function raises, the service sets its `shutdown` event
(`threading.Event`, pass your own to watch it). The streaming calls then
raise; `sideinput.Service.retrieve_side_input`, `sourcer.Service.pending_fn`
and `sourcer.Service.partitions_fn` return `None` instead.
`sourcetransformer.Service.source_transform_fn` transforms requests
concurrently, so responses may come back in a different order than the
requests, and reports failures as `TransformError` with a `StatusCode`.

## Writing a side-input retriever

```python
from numaudf.sideinput import SideInputRetriever, broadcast_message, no_broadcast_message


class Flag(SideInputRetriever):
    def __init__(self):
        self.enabled = True

    def retrieve_side_input(self):
        if not self.enabled:
            return no_broadcast_message()
        return broadcast_message(b"on")
```

## Transforming at the source

A source transformer maps each incoming datum to zero or more messages and
may assign a new event time. `message_to_drop(event_time)` drops a message
while still letting the watermark advance.

```python
from numaudf.sourcetransformer import Message, SourceTransformer


class Tag(SourceTransformer):
    def transform(self, keys, datum):
        return [Message(datum.value, datum.event_time).with_keys(keys).with_tags(["seen"])]
```

## Writing a source

Implement the four methods of `Sourcer`: `read` (returning an iterable of
messages), `ack`, `pending` and `partitions`. Offsets tie a read message to
its later acknowledgement; `new_offset_with_default_partition_id` and
`default_partitions` cover sources without partitions of their own, using the
replica index from the `NUMAFLOW_REPLICA` environment variable (0 when unset
or not a number). `numaudf.simple_source.SimpleSource` shows the contract.

## What the package does not do

There is no server and no command. Nothing here opens a socket, writes a
server-info file, encodes messages for the wire or handles signals: the
`Options` records only describe those settings, and the requests and
responses are plain dataclasses. To put a service on a network, supply a
stream object that does the transport and hand it to the service.