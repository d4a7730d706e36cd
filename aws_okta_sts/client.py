# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# Copyright 2018 Nextdoor.com, Inc
# Copyright 2018 Nathan V
"""
HTTP transport shared by the Okta and Identity Center clients.

Every call goes through `Client.request`, which sorts each response into
success, retryable (429, 5xx or an Okta rate-limit error body) or permanent
failure. Retryable responses are replayed with exponential backoff driven by
a urllib3 `Retry` policy; once the policy is exhausted the last decoded error
is raised. Errors below the HTTP layer (DNS, refused connections, TLS) are
raised straight away.
"""
import logging

import requests
from urllib3.exceptions import MaxRetryError
from urllib3.util.retry import Retry

LOG = logging.getLogger(__name__)

# Backoff grows 0.5s, 1s, 2s ... and is capped at 30s per attempt
DEFAULT_RETRY = Retry(total=10, backoff_factor=0.5, backoff_max=30)

JSON_HEADERS = {'Accept': 'application/json',
                'Content-Type': 'application/json'}

AUTHENTICATION_FAILED = 'E0000004'
TOO_MANY_REQUESTS = 'E0000047'


class OktaError(Exception):
    """An error response returned by the Okta API."""

    def __init__(self, status_code, body, code=None, summary=None,
                 error_id=None):
        self.status_code = status_code
        self.body = body
        self.code = code
        self.summary = summary
        self.error_id = error_id
        super(OktaError, self).__init__(self.message())

    def message(self):
        """Human readable form of the error."""
        if self.code:
            return '{}: {}'.format(self.code, self.summary)
        return 'HTTP {}: {}'.format(self.status_code, self.body)


class AuthenticationException(OktaError):
    """Okta rejected the supplied username or password."""


class TooManyRequestsException(OktaError):
    """Okta rate limited the request."""


ERROR_CODES = {
    AUTHENTICATION_FAILED: AuthenticationException,
    TOO_MANY_REQUESTS: TooManyRequestsException,
}


def okta_error(resp):
    """Decode an Okta error response into the matching exception.

    Okta error bodies look like
    {"errorCode": ..., "errorSummary": ..., "errorLink": ..., "errorId": ...}.
    Bodies that are not shaped like that become a plain OktaError carrying
    the raw text.

    Args:
        resp: requests.Response with a non-2xx status

    Returns:
        OktaError (or subclass) instance, not raised
    """
    try:
        body = resp.json()
    except ValueError:
        body = None

    if not isinstance(body, dict) or 'errorCode' not in body:
        return OktaError(resp.status_code, resp.text)

    error_class = ERROR_CODES.get(body['errorCode'], OktaError)
    return error_class(resp.status_code, resp.text,
                       code=body['errorCode'],
                       summary=body.get('errorSummary'),
                       error_id=body.get('errorId'))


class Client(object):
    """HTTP client bound to a single cookie jar and base URL.

    Args:
        base_url: Absolute URL relative paths are resolved against
        session: Optional requests.Session; one is created when omitted
        retry: urllib3 Retry used as the default backoff policy
    """

    def __init__(self, base_url, session=None, retry=DEFAULT_RETRY):
        if not base_url.endswith('/'):
            base_url = '{}/'.format(base_url)
        self.base_url = base_url
        self.session = session or requests.Session()
        self.retry = retry

    @property
    def cookies(self):
        """The cookie jar shared by every request from this client."""
        return self.session.cookies

    def url(self, path):
        """Resolve a path against the base URL; absolute URLs pass through."""
        if path.startswith('http://') or path.startswith('https://'):
            return path
        return '{}{}'.format(self.base_url, path.lstrip('/'))

    def error(self, resp):
        """Turn a failed response into an exception instance."""
        return okta_error(resp)

    @staticmethod
    def is_retryable(resp, error):
        """Whether a failed response should be replayed after a backoff."""
        if resp.status_code == 429 or resp.status_code >= 500:
            return True
        return isinstance(error, TooManyRequestsException)

    def request(self, method, url, retry=None, **kwargs):
        """Send a request, backing off and replaying retryable failures.

        Args:
            method: HTTP verb
            url: Absolute URL or path relative to the base URL
            retry: Optional Retry policy overriding the client default
            kwargs: Passed through to requests.Session.request

        Returns:
            requests.Response with a successful status
        """
        url = self.url(url)
        retry = retry or self.retry

        while True:
            LOG.debug('{} {}'.format(method, url))
            resp = self.session.request(method, url, **kwargs)

            if resp.ok:
                return resp

            error = self.error(resp)
            if not self.is_retryable(resp, error):
                raise error

            try:
                retry = retry.increment(method=method, url=url)
            except MaxRetryError:
                LOG.error('Giving up on {} after {} attempts'.format(
                    url, len(retry.history) + 1))
                raise error

            LOG.warning('Got {} from {}; backing off and retrying'.format(
                resp.status_code, url))
            retry.sleep()

    def get_response(self, url):
        """GET an absolute URL (or path) and hand back the raw response."""
        return self.request('GET', url)

    def get_json(self, path):
        """GET a path and decode the JSON body."""
        resp = self.request('GET', path, headers=JSON_HEADERS)
        resp_obj = resp.json()
        LOG.debug(resp_obj)
        return resp_obj

    def post_json(self, path, body):
        """POST a JSON body to a path or absolute URL and decode the reply."""
        resp = self.request('POST', path, json=body, headers=JSON_HEADERS)
        resp_obj = resp.json()
        LOG.debug(resp_obj)
        return resp_obj
