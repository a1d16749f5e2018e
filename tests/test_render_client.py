from unittest.mock import MagicMock

import pytest
import requests

from agents.render_client import (
    RenderClient,
    RenderClientConfig,
    RendererError,
    RendererTimeoutError,
)


def _response(status=200, body=None, content=b"{}"):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.content = content
    resp.json.return_value = body if body is not None else {}
    return resp


def _client(session):
    config = RenderClientConfig(
        base_url="http://renderer.local/",
        render_timeout_sec=30,
        stitch_timeout_sec=60,
        connect_timeout_sec=5,
    )
    return RenderClient(config, session=session)


def test_render_posts_spec_and_parses_result():
    session = MagicMock()
    session.post.return_value = _response(
        body={"video_url": "https://cdn/ch-1.mp4", "duration_seconds": 1075.5}
    )

    result = _client(session).render({"template": "DocumentaryChapterTemplate"})

    assert result.video_url == "https://cdn/ch-1.mp4"
    assert result.duration_seconds == 1075.5
    args, kwargs = session.post.call_args
    assert args[0] == "http://renderer.local/render"
    assert kwargs["json"] == {"template": "DocumentaryChapterTemplate"}
    assert kwargs["timeout"] == (5, 30)


def test_stitch_uses_stitch_endpoint_and_timeout():
    session = MagicMock()
    session.post.return_value = _response(body={"video_url": "https://cdn/final.mp4"})

    result = _client(session).stitch({"chapters": []})

    assert result.video_url == "https://cdn/final.mp4"
    assert result.duration_seconds is None
    assert session.post.call_args.args[0] == "http://renderer.local/stitch"
    assert session.post.call_args.kwargs["timeout"] == (5, 60)


def test_empty_body_yields_empty_result():
    session = MagicMock()
    session.post.return_value = _response(content=b"")

    result = _client(session).render({})

    assert result.video_url is None
    assert result.duration_seconds is None


def test_timeout_is_classified():
    session = MagicMock()
    session.post.side_effect = requests.ReadTimeout("slow")

    with pytest.raises(RendererTimeoutError) as exc:
        _client(session).render({})

    assert exc.value.kind == "timeout"
    assert "timed out after 30s" in str(exc.value)


def test_connection_error_is_network_kind():
    session = MagicMock()
    session.post.side_effect = requests.ConnectionError("refused")

    with pytest.raises(RendererError) as exc:
        _client(session).render({})

    assert exc.value.kind == "network"


def test_non_success_status_raises_renderer_error():
    session = MagicMock()
    session.post.return_value = _response(status=500)

    with pytest.raises(RendererError) as exc:
        _client(session).render({})

    assert str(exc.value) == "Render failed: 500"
    assert exc.value.kind == "renderer_error"
    assert exc.value.status_code == 500


def test_invalid_json_raises_renderer_error():
    session = MagicMock()
    resp = _response(content=b"<html>")
    resp.json.side_effect = ValueError("no json")
    session.post.return_value = resp

    with pytest.raises(RendererError, match="invalid JSON"):
        _client(session).stitch({})


@pytest.mark.parametrize("duration", ["unknown", [1200], {"s": 1}])
def test_malformed_duration_raises_renderer_error(duration):
    session = MagicMock()
    session.post.return_value = _response(
        body={"video_url": "https://cdn/final.mp4", "duration_seconds": duration}
    )

    with pytest.raises(RendererError, match="invalid duration") as exc:
        _client(session).stitch({})

    assert exc.value.kind == "renderer_error"


def test_numeric_string_duration_is_accepted():
    session = MagicMock()
    session.post.return_value = _response(body={"duration_seconds": "1200.5"})

    assert _client(session).render({}).duration_seconds == 1200.5
