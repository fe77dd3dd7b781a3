"""
Unit tests for the parse-test client (dashboard/parsing) and the Celery task.

外部 HTTP 调用全部 mock 掉，不会真的发请求。
"""
import pytest
from unittest.mock import MagicMock, patch

import requests
from celery.exceptions import Retry

from dashboard.parsing.factory import get_parse_service
from dashboard.parsing.services import EdgeFunctionParseService
from dashboard.tasks import run_test_parse

PARSE_RESPONSE = {
    'hospital': {'id': 3, 'name': '서울정형외과'},
    'method': 'ai',
    'items': [
        {'original_text': '무릎보호대 M 5개', 'product_name': '무릎보호대',
         'quantity': 5, 'unit_type': 'piece',
         'match_status': 'matched', 'match_confidence': 0.93},
        {'original_text': '파스 2박스'},
    ],
}


@pytest.fixture
def parse_settings(settings):
    settings.PARSE_PROVIDER = 'edge_function'
    settings.PARSE_FUNCTION_URL = 'https://parse.example.test/functions/v1/test-parse'
    settings.PARSE_FUNCTION_KEY = 'secret'
    settings.PARSE_TIMEOUT = 5
    return settings


def ok_response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


class TestFactory:

    def test_default_provider(self, parse_settings):
        assert isinstance(get_parse_service(), EdgeFunctionParseService)

    def test_unknown_provider(self, settings):
        settings.PARSE_PROVIDER = 'gpt-local'
        with pytest.raises(ValueError, match='Unknown PARSE_PROVIDER'):
            get_parse_service()


class TestEdgeFunctionParseService:

    @patch('dashboard.parsing.services.requests.post')
    def test_maps_response(self, mock_post, parse_settings):
        mock_post.return_value = ok_response(PARSE_RESPONSE)

        result = EdgeFunctionParseService().parse('무릎보호대 M 5개, 파스 2박스')

        assert result.hospital_name == '서울정형외과'
        assert result.hospital_id == 3
        assert result.method == 'ai'
        assert [i.quantity for i in result.items] == [5, None]
        assert result.items[1].match_status == 'unmatched'

    @patch('dashboard.parsing.services.requests.post')
    def test_sends_message_with_bearer_key(self, mock_post, parse_settings):
        mock_post.return_value = ok_response({'items': []})

        EdgeFunctionParseService().parse('hello')

        args, kwargs = mock_post.call_args
        assert args[0] == parse_settings.PARSE_FUNCTION_URL
        assert kwargs['json'] == {'message': 'hello'}
        assert kwargs['headers']['Authorization'] == 'Bearer secret'
        assert kwargs['timeout'] == 5

    def test_missing_url(self, parse_settings):
        parse_settings.PARSE_FUNCTION_URL = ''
        with pytest.raises(ValueError, match='PARSE_FUNCTION_URL'):
            EdgeFunctionParseService().parse('hello')


class TestRunTestParseTask:

    @patch('dashboard.parsing.services.requests.post')
    def test_success(self, mock_post, parse_settings):
        mock_post.return_value = ok_response(PARSE_RESPONSE)

        result = run_test_parse.apply(args=['무릎보호대 M 5개']).get()

        assert result['ok'] is True
        assert result['result']['hospital_name'] == '서울정형외과'
        assert len(result['result']['items']) == 2

    @patch('dashboard.parsing.services.requests.post')
    def test_http_error_not_retried(self, mock_post, parse_settings):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError('500 Server Error')
        mock_post.return_value = response

        result = run_test_parse.apply(args=['hello']).get()

        assert result == {'ok': False, 'error': '500 Server Error'}
        assert mock_post.call_count == 1

    def test_configuration_error(self, parse_settings):
        parse_settings.PARSE_FUNCTION_URL = ''

        result = run_test_parse.apply(args=['hello']).get()

        assert result['ok'] is False
        assert 'PARSE_FUNCTION_URL' in result['error']

    @patch('dashboard.parsing.services.requests.post')
    def test_connection_error_retries(self, mock_post, parse_settings):
        mock_post.side_effect = requests.ConnectionError('refused')

        with patch.object(run_test_parse, 'retry', return_value=Retry()) as mock_retry:
            with pytest.raises(Retry):
                run_test_parse.run('hello')

        assert mock_retry.call_args.kwargs['countdown'] == 5

    @patch('dashboard.parsing.services.requests.post')
    def test_gives_up_after_max_retries(self, mock_post, parse_settings):
        mock_post.side_effect = requests.Timeout('timed out')

        result = run_test_parse.apply(args=['hello'], retries=2).get()

        assert result == {'ok': False, 'error': 'timed out'}
