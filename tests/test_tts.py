"""Unit tests for the text-to-speech client."""

from unittest.mock import MagicMock

import requests

from eduadmin.tts import MAX_TEXT_LENGTH, TTSClient, clamp_speed, get_voice_code, validate_text


def make_response(status_code=200, json_data=None, content=b'', json_error=False):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.content = content
    if json_error:
        response.json.side_effect = ValueError('no json')
    else:
        response.json.return_value = json_data or {}
    return response


def make_client(session):
    return TTSClient('https://tts.example.com/v5', 'key-123', timeout_seconds=5, session=session)


def test_clamp_speed():
    assert clamp_speed(0) == 0
    assert clamp_speed(2.4) == 2
    assert clamp_speed(2.5) == 3
    assert clamp_speed(10) == 3
    assert clamp_speed(-10) == -3
    assert clamp_speed(float('nan')) == 0
    assert clamp_speed('fast') == 0


def test_get_voice_code():
    assert get_voice_code('leminh_south') == 'leminh'
    assert get_voice_code('unknown') == 'banmai'


def test_validate_text():
    assert validate_text('hello') is None
    assert validate_text('   ') is not None
    assert validate_text(None) is not None
    assert validate_text('a' * (MAX_TEXT_LENGTH + 1)) is not None
    assert validate_text('a' * MAX_TEXT_LENGTH) is None


def test_synthesize_success():
    session = MagicMock()
    session.post.return_value = make_response(json_data={'error': 0, 'async': 'https://cdn.example.com/a.mp3'})
    session.get.return_value = make_response(content=b'MP3DATA')

    result = make_client(session).synthesize('Xin chao', voice='giahuy_central', speed=1.2)

    assert result.ok
    assert result.audio == b'MP3DATA'
    assert result.audio_url == 'https://cdn.example.com/a.mp3'
    headers = session.post.call_args.kwargs['headers']
    assert headers['api-key'] == 'key-123'
    assert headers['voice'] == 'giahuy'
    assert headers['speed'] == '1'
    assert session.post.call_args.kwargs['timeout'] == 5.0
    session.get.assert_called_once_with('https://cdn.example.com/a.mp3', timeout=5.0)


def test_synthesize_rejects_bad_text_without_calling_api():
    session = MagicMock()
    client = make_client(session)

    assert client.synthesize('').error
    assert client.synthesize('a' * (MAX_TEXT_LENGTH + 1)).error
    session.post.assert_not_called()


def test_synthesize_without_api_key():
    session = MagicMock()
    client = TTSClient('https://tts.example.com/v5', '', session=session)

    result = client.synthesize('hello')

    assert not client.enabled
    assert result.error == 'Text-to-speech is not configured'
    session.post.assert_not_called()


def test_synthesize_http_error_uses_api_message():
    session = MagicMock()
    session.post.return_value = make_response(status_code=401, json_data={'message': 'Invalid API key'})

    result = make_client(session).synthesize('hello')

    assert result.error == 'Invalid API key'
    assert result.audio is None


def test_synthesize_http_error_without_json():
    session = MagicMock()
    session.post.return_value = make_response(status_code=500, json_error=True)

    result = make_client(session).synthesize('hello')

    assert result.error == 'API returned error 500'


def test_synthesize_payload_error():
    session = MagicMock()
    session.post.return_value = make_response(json_data={'error': 1, 'message': 'quota exceeded'})

    result = make_client(session).synthesize('hello')

    assert result.error == 'quota exceeded'
    session.get.assert_not_called()


def test_synthesize_audio_download_fails():
    session = MagicMock()
    session.post.return_value = make_response(json_data={'error': 0, 'async': 'https://cdn.example.com/a.mp3'})
    session.get.return_value = make_response(status_code=404)

    result = make_client(session).synthesize('hello')

    assert result.error == 'Could not download the audio file'
    assert result.audio_url == 'https://cdn.example.com/a.mp3'


def test_synthesize_connection_error():
    session = MagicMock()
    session.post.side_effect = requests.ConnectionError('connection refused')

    result = make_client(session).synthesize('hello')

    assert result.error == 'connection refused'
    assert not result.ok


def test_synthesize_non_object_json_is_an_error():
    session = MagicMock()
    session.post.return_value = make_response(json_data=['unexpected'])

    result = make_client(session).synthesize('hello')

    assert not result.ok
    assert result.error == 'Speech service returned an invalid response'
    session.get.assert_not_called()

    response = make_response(status_code=500)
    response.json.return_value = None
    session.post.return_value = response

    result = make_client(session).synthesize('hello')

    assert result.error == 'API returned error 500'
