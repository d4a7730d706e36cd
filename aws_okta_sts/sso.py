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
Identity-Center (AWS SSO) support.

Okta's `amazon_aws_sso` applications hand the browser a SAML form that
logs into AWS's sign-in service, which then redirects to the user's SSO
portal. Posting that form ourselves leaves an organization id and a one
time auth code behind, either in the `platform-workflow-state` cookie or
in the final redirect URL. The auth code buys a bearer token for the SSO
portal API, which lists accounts (app instances), their roles (profiles)
and hands out role credentials.
"""
import collections
import datetime
import json
import logging
import re
from urllib.parse import parse_qs, unquote, urlsplit

import requests
from urllib3.util.retry import Retry

from aws_okta_sts import aws
from aws_okta_sts.client import DEFAULT_RETRY, Client

LOG = logging.getLogger(__name__)

PORTAL_URL = 'https://portal.sso.us-east-1.amazonaws.com/'
WORKFLOW_STATE_URL = 'https://us-east-1.signin.aws.amazon.com/platform'
WORKFLOW_STATE_COOKIE = 'platform-workflow-state'
AUTH_CODE_PARAM = 'workflowResultHandle'
START_URL = 'https://{org_id}.awsapps.com/start'
AWS_ACCOUNT_APP = 'AWS Account'

APP_INSTANCES_RETRY = Retry(total=3, backoff_factor=1, backoff_max=10)
PROFILES_RETRY = Retry(total=8, backoff_factor=0.5, backoff_max=30)

ACCOUNT_ID = re.compile(r'^(\d+)')
ACCOUNT_NAME = re.compile(r'\((.+)\)')

OrgAuth = collections.namedtuple('OrgAuth', ['org_id', 'auth_code'])


class SsoError(Exception):
    """Base Identity-Center error."""


class OrgAuthNotFound(SsoError):
    """Neither the cookie nor the redirect URL carried the org auth."""

    def __init__(self, errors):
        self.errors = errors
        super(OrgAuthNotFound, self).__init__(
            'Unable to find SSO organization auth: {}'.format(
                '; '.join(str(err) for err in errors)))


class DirectoryError(SsoError):
    """The SSO portal answered with a non-2xx status."""

    def __init__(self, status_code, body):
        self.status_code = status_code
        self.body = body
        super(DirectoryError, self).__init__(
            'SSO portal returned HTTP {}: {}'.format(status_code, body))


class AppInstance(object):
    """An SSO portal application; for AWS accounts the name looks like
    `123456789012 (Account Name)`."""

    def __init__(self, instance_id, name, description=None,
                 application_id=None, application_name=None, icon=None):
        self.id = instance_id
        self.name = name
        self.description = description
        self.application_id = application_id
        self.application_name = application_name
        self.icon = icon

    @classmethod
    def from_dict(cls, data):
        return cls(data['id'], data['name'], data.get('description'),
                   data.get('applicationId'), data.get('applicationName'),
                   data.get('icon'))

    def account_id(self):
        match = ACCOUNT_ID.match(self.name)
        if match is None:
            return None
        return match.group(1)

    def account_name(self):
        # Greedy: "1 (Prod (Main))" yields "prod-(main)"
        match = ACCOUNT_NAME.search(self.name)
        if match is None:
            return None
        name = match.group(1).lower()
        return name.replace(' ', '-').replace('_', '-')

    def __repr__(self):
        return '<AppInstance {}>'.format(self.name)


class Profile(object):
    """A permission set (role) the user may assume inside an AppInstance."""

    def __init__(self, profile_id, name, description=None, url=None,
                 protocol=None, relay_state=None):
        self.id = profile_id
        self.name = name
        self.description = description
        self.url = url
        self.protocol = protocol
        self.relay_state = relay_state

    @classmethod
    def from_dict(cls, data):
        return cls(data['id'], data['name'], data.get('description'),
                   data.get('url'), data.get('protocol'),
                   data.get('relayState'))

    def __repr__(self):
        return '<Profile {}>'.format(self.name)


def auth_code_from_url(url):
    codes = parse_qs(urlsplit(url).query).get(AUTH_CODE_PARAM)
    if not codes:
        raise SsoError('No {} found in {}'.format(AUTH_CODE_PARAM, url))
    return codes[0]


def cookie_applies(cookie, url):
    """Whether a cookie from the jar would be sent to url."""
    parts = urlsplit(url)
    domain = (cookie.domain or '').lstrip('.')
    if domain and not (parts.hostname == domain or
                       parts.hostname.endswith('.' + domain)):
        return False
    return parts.path.startswith(cookie.path or '/')


def org_auth_from_cookie(cookies):
    """Read the org auth out of the workflow state cookie.

    The cookie holds percent encoded JSON with the redirect URL (carrying
    the auth code) and the presentation context (carrying the org id).

    Args:
        cookies: requests cookie jar used to post the SAML form

    Returns: OrgAuth
    """
    for cookie in cookies:
        if (cookie.name == WORKFLOW_STATE_COOKIE and
                cookie_applies(cookie, WORKFLOW_STATE_URL)):
            break
    else:
        raise SsoError('{} cookie not found'.format(WORKFLOW_STATE_COOKIE))

    value = unquote(cookie.value).strip('"')
    try:
        state = json.loads(value)
        redirect_url = state['redirect']['url']
        org_id = state['presentationContext']['identityPoolId']
    except (ValueError, KeyError, TypeError) as err:
        raise SsoError('Invalid {} cookie ({})'.format(
            WORKFLOW_STATE_COOKIE, err))

    LOG.debug('Extracted SSO org auth from workflow state cookie')
    return OrgAuth(org_id, auth_code_from_url(redirect_url))


def org_auth_from_url(url):
    """Read the org auth out of the final redirect URL.

    The org id is the first label of the portal host name, e.g.
    `d-1234567890` for `d-1234567890.awsapps.com`.
    """
    host = urlsplit(url).hostname
    if not host or '.' not in host:
        raise SsoError('No organization found in host of {}'.format(url))

    org_id = host.split('.', 1)[0]
    LOG.debug('Extracted SSO org auth from response URL')
    return OrgAuth(org_id, auth_code_from_url(url))


def extract_org_auth(cookies, url):
    """Try the cookie, then the URL; the first to succeed wins."""
    errors = []
    attempts = ((org_auth_from_cookie, cookies), (org_auth_from_url, url))
    for attempt, source in attempts:
        try:
            return attempt(source)
        except SsoError as err:
            LOG.debug('SSO org auth extraction failed: {}'.format(err))
            errors.append(err)
    raise OrgAuthNotFound(errors)


def bridge(saml_response, session=None):
    """Post Okta's SAML form to AWS and recover the SSO org auth.

    A fresh cookie jar is used so the AWS cookies never mix with Okta's.

    Args:
        saml_response: saml.SamlResponse for an amazon_aws_sso app link
        session: Optional requests.Session, mostly for tests

    Returns: OrgAuth
    """
    session = session or requests.Session()
    resp = session.post(saml_response.url, data=saml_response.form())
    LOG.debug('SAML post to {} ended at {} ({})'.format(
        saml_response.url, resp.url, resp.status_code))
    return extract_org_auth(session.cookies, resp.url)


def start_url(org_id):
    return START_URL.format(org_id=org_id)


class SsoClient(Client):
    """Bearer token client for the SSO portal API."""

    def __init__(self, token=None, session=None, retry=DEFAULT_RETRY):
        super(SsoClient, self).__init__(PORTAL_URL, session=session,
                                        retry=retry)
        self.token = token

    @classmethod
    def from_org_auth(cls, org_auth, session=None, retry=DEFAULT_RETRY):
        """Trade the one time auth code for a portal bearer token."""
        client = cls(session=session, retry=retry)
        resp = client.request('POST', 'auth/sso-token',
                              data={'authCode': org_auth.auth_code,
                                    'orgId': org_auth.org_id})
        client.token = resp.json()['token']
        return client

    def headers(self):
        # The portal has accepted both spellings at different times
        return {'x-amz-sso_bearer_token': self.token,
                'x-amz-sso-bearer-token': self.token}

    def error(self, resp):
        return DirectoryError(resp.status_code, resp.text)

    @staticmethod
    def is_retryable(resp, error):
        return resp.status_code == 429 or resp.status_code >= 500

    def get_page(self, path, retry=None, params=None):
        """GET a paged listing and return its result list.

        Only the first page is read; a pagination token is logged.
        """
        resp = self.request('GET', path, retry=retry, params=params,
                            headers=self.headers())
        page = resp.json()
        if page.get('paginationToken'):
            LOG.debug('Ignoring pagination token for {}'.format(path))
        return page['result']

    def app_instances(self):
        return [AppInstance.from_dict(instance) for instance in
                self.get_page('instance/appinstances',
                              retry=APP_INSTANCES_RETRY)]

    def profiles(self, app_instance_id):
        return [Profile.from_dict(profile) for profile in
                self.get_page('instance/appinstance/{}/profiles'.format(
                    app_instance_id), retry=PROFILES_RETRY)]

    def credentials(self, account_id, role_name):
        """Fetch role credentials for an account and role name.

        Returns: aws.Credentials
        """
        LOG.debug('Requesting credentials for account: {}, role: {}'.format(
            account_id, role_name))
        resp = self.request('GET', 'federation/credentials/',
                            params={'account_id': account_id,
                                    'role_name': role_name,
                                    'debug': 'true'},
                            headers=self.headers())
        creds = resp.json()['roleCredentials']
        expiration = datetime.datetime.fromtimestamp(
            creds['expiration'] / 1000.0, tz=datetime.timezone.utc)
        return aws.Credentials(creds['accessKeyId'],
                               creds['secretAccessKey'],
                               creds['sessionToken'],
                               expiration)
