import pytest
from mcp import types

from confluence_lib.dispatcher import Dispatcher, ToolCallRequest
from confluence_lib.errors import ContentServiceError, ErrorKind, ProtocolError
from confluence_lib.operations import text_result


class Recorder:
    def __init__(self, behaviour=None):
        self.calls = []
        self.behaviour = behaviour

    async def __call__(self, client, **kwargs):
        self.calls.append((client, kwargs))
        if self.behaviour is not None:
            raise self.behaviour
        return text_result("ok")


@pytest.fixture
def recorders():
    return {
        name: Recorder()
        for name in ("get_page", "get_child_pages", "create_page", "create_comment", "search_pages")
    }


@pytest.fixture
def factory_calls():
    return []


@pytest.fixture
def dispatcher(recorders, factory_calls):
    def factory():
        factory_calls.append(True)
        return "client"

    return Dispatcher(factory, operations=recorders)


def test_list_tools_matches_registry(dispatcher):
    result = dispatcher.list_tools()

    assert isinstance(result, types.ListToolsResult)
    assert [tool.name for tool in result.tools][0] == "get_page"
    assert len(result.tools) == 5


@pytest.mark.anyio("asyncio")
async def test_unknown_tool_is_method_not_found(dispatcher, recorders, factory_calls):
    with pytest.raises(ProtocolError) as excinfo:
        await dispatcher.dispatch(ToolCallRequest("delete_space", {"spaceKey": "X"}))

    assert excinfo.value.kind is ErrorKind.METHOD_NOT_FOUND
    assert excinfo.value.code == types.METHOD_NOT_FOUND
    assert "delete_space" in excinfo.value.message
    assert all(not recorder.calls for recorder in recorders.values())
    assert factory_calls == []


@pytest.mark.anyio("asyncio")
async def test_absent_arguments_are_invalid_params(dispatcher, recorders):
    with pytest.raises(ProtocolError) as excinfo:
        await dispatcher.dispatch(ToolCallRequest("get_page", None))

    assert excinfo.value.kind is ErrorKind.INVALID_PARAMS
    assert recorders["get_page"].calls == []


@pytest.mark.anyio("asyncio")
async def test_missing_required_field_is_invalid_params(dispatcher, recorders, factory_calls):
    with pytest.raises(ProtocolError) as excinfo:
        await dispatcher.dispatch(ToolCallRequest("create_page", {"spaceKey": "DOC", "title": "T"}))

    assert excinfo.value.kind is ErrorKind.INVALID_PARAMS
    assert "content" in excinfo.value.message
    assert recorders["create_page"].calls == []
    assert factory_calls == []


@pytest.mark.anyio("asyncio")
async def test_wrong_argument_type_is_invalid_params(dispatcher, recorders):
    with pytest.raises(ProtocolError) as excinfo:
        await dispatcher.dispatch(ToolCallRequest("get_child_pages", {"pageId": "1", "limit": True}))

    assert excinfo.value.kind is ErrorKind.INVALID_PARAMS
    assert recorders["get_child_pages"].calls == []


@pytest.mark.anyio("asyncio")
async def test_defaults_are_applied_and_extras_dropped(dispatcher, recorders):
    result = await dispatcher.dispatch(ToolCallRequest("get_page", {"pageId": "123", "verbose": True}))

    assert result.content[0].text == "ok"
    client, kwargs = recorders["get_page"].calls[0]
    assert client == "client"
    assert kwargs == {"pageId": "123", "includeComments": True}


@pytest.mark.anyio("asyncio")
async def test_search_defaults(dispatcher, recorders):
    await dispatcher.dispatch(ToolCallRequest("search_pages", {"query": "roadmap"}))

    _, kwargs = recorders["search_pages"].calls[0]
    assert kwargs == {"query": "roadmap", "spaceKey": None, "limit": 20, "start": 0}


@pytest.mark.anyio("asyncio")
async def test_explicit_false_is_kept(dispatcher, recorders):
    await dispatcher.dispatch(ToolCallRequest("get_page", {"pageId": "5", "includeComments": False}))

    _, kwargs = recorders["get_page"].calls[0]
    assert kwargs["includeComments"] is False


@pytest.mark.anyio("asyncio")
async def test_content_service_failure_becomes_internal_error(recorders):
    recorders["get_page"].behaviour = ContentServiceError(404, "Page not found (ID: 1)")
    dispatcher = Dispatcher(lambda: "client", operations=recorders)

    with pytest.raises(ProtocolError) as excinfo:
        await dispatcher.dispatch(ToolCallRequest("get_page", {"pageId": "1"}))

    assert excinfo.value.kind is ErrorKind.INTERNAL_ERROR
    assert excinfo.value.message == "Error executing tool get_page: Page not found (ID: 1)"


@pytest.mark.anyio("asyncio")
async def test_unexpected_failure_becomes_internal_error(recorders):
    recorders["create_comment"].behaviour = RuntimeError("socket closed")
    dispatcher = Dispatcher(lambda: "client", operations=recorders)

    with pytest.raises(ProtocolError) as excinfo:
        await dispatcher.dispatch(ToolCallRequest("create_comment", {"pageId": "1", "comment": "hi"}))

    assert excinfo.value.kind is ErrorKind.INTERNAL_ERROR
    assert "socket closed" in excinfo.value.message


@pytest.mark.anyio("asyncio")
async def test_protocol_errors_pass_through_unchanged(recorders):
    raised = ProtocolError.invalid_params("bad page id")
    recorders["get_page"].behaviour = raised
    dispatcher = Dispatcher(lambda: "client", operations=recorders)

    with pytest.raises(ProtocolError) as excinfo:
        await dispatcher.dispatch(ToolCallRequest("get_page", {"pageId": "x"}))

    assert excinfo.value is raised


def test_from_params_requires_a_name():
    with pytest.raises(ProtocolError) as excinfo:
        ToolCallRequest.from_params({"arguments": {}})
    assert excinfo.value.kind is ErrorKind.INVALID_PARAMS

    with pytest.raises(ProtocolError):
        ToolCallRequest.from_params({"name": "get_page", "arguments": ["1"]})

    request = ToolCallRequest.from_params({"name": "get_page"})
    assert request.arguments is None
