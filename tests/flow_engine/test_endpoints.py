"""Unit tests for endpoint construction, attributes and per-kind behaviour."""

from __future__ import annotations

import pytest

from msgflow import (
    ArgumentShape,
    Bridge,
    CompositionError,
    DispatchError,
    Endpoint,
    EndpointKind,
    FlowReference,
    Message,
    MessageFilter,
    MessageFlow,
    Router,
    ServiceActivator,
    Splitter,
    Transformer,
    create_endpoint,
)
from tests.flow_engine.conftest import Recorder, identity, is_hello, upper


def wired(endpoint, inp="in", out="out"):
    endpoint._assign("e", inp, out)
    return endpoint


# ---------------------------------------------------------------------------
# Attributes
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestEndpointAttributes:
    def test_defaults(self):
        t = Transformer(upper)
        assert t.declared_input is None
        assert t.declared_output is None
        assert t.link_to_next is True
        assert t.expects is ArgumentShape.PAYLOAD

    def test_snake_case_options(self):
        t = Transformer(upper, input_channel="a", output_channel="b", link_to_next=False)
        assert (t.declared_input, t.declared_output, t.link_to_next) == ("a", "b", False)

    def test_camel_case_options(self):
        t = Transformer(upper, inputChannel="a", outputChannel="b", linkToNext=False)
        assert (t.declared_input, t.declared_output, t.link_to_next) == ("a", "b", False)

    def test_unknown_option_rejected(self):
        with pytest.raises(CompositionError, match="Invalid attributes"):
            Transformer(upper, colour="red")

    def test_blank_channel_rejected(self):
        with pytest.raises(CompositionError):
            Transformer(upper, input_channel="  ")

    def test_expects_accepts_string(self):
        assert Transformer(upper, expects="headers").expects is ArgumentShape.HEADERS

    def test_missing_logic_rejected(self):
        with pytest.raises(CompositionError, match="requires a callable"):
            Transformer(None)

    def test_non_callable_logic_rejected(self):
        with pytest.raises(CompositionError, match="requires a callable"):
            ServiceActivator("not callable")

    def test_discard_channel_only_on_filter(self):
        with pytest.raises(CompositionError, match="discard_channel"):
            Transformer(upper, discard_channel="rejects")

    def test_explicit_name_wins_over_assigned(self):
        t = Transformer(upper, name="shout")
        t._assign("f.transform_1", "in", "out")
        assert t.name == "shout"

    def test_unassigned_name_is_stable(self):
        t = Transformer(upper)
        assert t.name == t.name


# ---------------------------------------------------------------------------
# Kind registry
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestCreateEndpoint:
    @pytest.mark.parametrize(
        "kind, cls",
        [
            ("transform", Transformer),
            ("filter", MessageFilter),
            ("handle", ServiceActivator),
            ("split", Splitter),
        ],
    )
    def test_kind_tags_map_to_classes(self, kind, cls):
        assert type(create_endpoint(kind, identity)) is cls

    def test_route_receives_rules(self):
        router = create_endpoint(EndpointKind.ROUTE, identity)
        assert isinstance(router, Router)

    def test_bridge_without_logic(self):
        assert isinstance(create_endpoint("bridge"), Bridge)

    def test_bridge_with_logic_rejected(self):
        with pytest.raises(CompositionError, match="bridge"):
            create_endpoint("bridge", identity)

    def test_exec_wraps_flow(self):
        flow = MessageFlow(Transformer(upper))
        ref = create_endpoint("exec", flow)
        assert isinstance(ref, FlowReference)
        assert ref.target is flow

    def test_unknown_kind_rejected(self):
        with pytest.raises(CompositionError, match="Unknown endpoint kind"):
            create_endpoint("aggregate", identity)

    def test_children_only_for_route(self):
        with pytest.raises(CompositionError, match="does not take children"):
            create_endpoint("transform", identity, object())


# ---------------------------------------------------------------------------
# Per-kind behaviour
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestInvoke:
    def test_payload_shape(self):
        rec = Recorder()
        wired(Transformer(rec)).emit(Message("p", headers={"h": 1}))
        assert rec.call_log == ["p"]

    def test_headers_shape(self):
        rec = Recorder()
        wired(Transformer(rec, expects="headers")).emit(Message("p", headers={"h": 1}))
        assert rec.call_log == [{"h": 1}]

    def test_message_shape(self):
        rec = Recorder()
        msg = Message("p")
        wired(Transformer(rec, expects="message")).emit(msg)
        assert rec.call_log == [msg]


@pytest.mark.unit
class TestTransformer:
    def test_result_becomes_payload_on_output_channel(self):
        msg = Message("hi", headers={"h": 1})
        [(channel, out)] = wired(Transformer(upper)).emit(msg)
        assert channel == "out"
        assert out.payload == "HI"
        assert out.headers["h"] == 1

    def test_returned_message_used_as_is(self):
        replacement = Message("other")
        [(_, out)] = wired(Transformer(lambda p: replacement)).emit(Message("p"))
        assert out is replacement

    def test_none_absorbs(self):
        assert wired(Transformer(lambda p: None)).emit(Message("p")) == []


@pytest.mark.unit
class TestMessageFilter:
    def test_accepts(self):
        msg = Message("HELLO")
        assert wired(MessageFilter(is_hello)).emit(msg) == [("out", msg)]

    def test_rejects_silently(self):
        assert wired(MessageFilter(is_hello)).emit(Message("world")) == []

    def test_rejects_to_discard_channel(self):
        msg = Message("world")
        f = wired(MessageFilter(is_hello, discard_channel="rejects"))
        assert f.emit(msg) == [("rejects", msg)]
        assert f.writes() == ["out", "rejects"]


@pytest.mark.unit
class TestServiceActivator:
    def test_none_result_ends_flow(self):
        rec = Recorder(result=None)
        assert wired(ServiceActivator(rec)).emit(Message("p")) == []
        assert rec.call_log == ["p"]

    def test_value_result_forwarded(self):
        [(_, out)] = wired(ServiceActivator(lambda p: p * 2)).emit(Message(2))
        assert out.payload == 4


@pytest.mark.unit
class TestBridge:
    def test_forwards_unchanged(self):
        msg = Message("p")
        assert wired(Bridge()).emit(msg) == [("out", msg)]


@pytest.mark.unit
class TestSplitter:
    def test_one_message_per_item_with_sequence_headers(self):
        msg = Message("a,b,c")
        outputs = wired(Splitter(lambda p: p.split(","))).emit(msg)
        assert [out.payload for _, out in outputs] == ["a", "b", "c"]
        assert [out.headers["sequence_number"] for _, out in outputs] == [1, 2, 3]
        assert {out.headers["sequence_size"] for _, out in outputs} == {3}
        assert {out.headers["correlation_id"] for _, out in outputs} == {msg.id}

    def test_empty_result(self):
        assert wired(Splitter(lambda p: [])).emit(Message("p")) == []

    def test_none_result(self):
        assert wired(Splitter(lambda p: None)).emit(Message("p")) == []

    def test_string_result_rejected(self):
        with pytest.raises(TypeError, match="iterable"):
            wired(Splitter(lambda p: "abc")).emit(Message("p"))


@pytest.mark.unit
class TestFlowReference:
    def test_repr_names_target(self):
        flow = MessageFlow(Transformer(upper), name="shared")
        assert "shared" in repr(FlowReference(flow))

    def test_unconnected_reference_cannot_dispatch(self):
        ref = FlowReference(MessageFlow(Transformer(upper)))
        with pytest.raises(DispatchError, match="not connected"):
            ref.process(Message("p"))

    def test_emits_reply_of_connected_request(self):
        target = MessageFlow(Transformer(upper), name="shared")
        ref = wired(FlowReference(target))
        calls = []

        def request(channel, message):
            calls.append(channel)
            return message.with_payload("reply")

        ref.connect(request)
        [(channel, out)] = ref.emit(Message("p"))
        assert calls == ["shared.inputChannel"]
        assert (channel, out.payload) == ("out", "reply")

    def test_no_reply_absorbs(self):
        ref = wired(FlowReference(MessageFlow(Transformer(upper))))
        ref.connect(lambda channel, message: None)
        assert ref.emit(Message("p")) == []


@pytest.mark.unit
class TestEndpointBase:
    def test_base_is_abstract(self):
        with pytest.raises(TypeError):
            Endpoint(identity)  # type: ignore[abstract]

    def test_subclass_without_process_is_abstract(self):
        class Incomplete(Endpoint):
            kind = EndpointKind.HANDLE

        with pytest.raises(TypeError):
            Incomplete(identity)  # type: ignore[abstract]
