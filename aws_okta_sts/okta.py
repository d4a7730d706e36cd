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
"""This contains the Okta client code.

An `Okta` object owns one organization's cookie jar. `authenticate()` walks
the Okta authentication API (password, then MFA when required) to a session
token, trades it for a `sid` session cookie, and from then on the same
cookie jar is used to list the user's applications and fetch their SAML
forms.
"""
import logging
import re
from enum import Enum
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

from aws_okta_sts import saml
from aws_okta_sts.client import AuthenticationException, Client
from aws_okta_sts.factors import Factor, FactorResult, Verifier

LOG = logging.getLogger(__name__)

BASE_URL = 'https://{organization}.okta.com/'

SAML_APP = 'amazon_aws'
SSO_APP = 'amazon_aws_sso'

EXTRA_VERIFICATION_TITLE = re.compile(r'.* - Extra Verification$')
STATE_TOKEN = re.compile(r"var stateToken = '(.+)';")


class UnknownError(Exception):
    """Okta answered the login with a status this tool does not handle."""


class InvalidResponse(Exception):
    """A login response was missing something it must carry."""


class NoEnrolledFactors(InvalidResponse):
    """MFA is required but the user has no factors enrolled."""


class LoginState(Enum):
    """Okta authentication transaction states."""

    UNAUTHENTICATED = 'UNAUTHENTICATED'
    PASSWORD_WARN = 'PASSWORD_WARN'
    PASSWORD_EXPIRED = 'PASSWORD_EXPIRED'
    RECOVERY = 'RECOVERY'
    RECOVERY_CHALLENGE = 'RECOVERY_CHALLENGE'
    PASSWORD_RESET = 'PASSWORD_RESET'
    LOCKED_OUT = 'LOCKED_OUT'
    MFA_ENROLL = 'MFA_ENROLL'
    MFA_ENROLL_ACTIVATE = 'MFA_ENROLL_ACTIVATE'
    MFA_REQUIRED = 'MFA_REQUIRED'
    MFA_CHALLENGE = 'MFA_CHALLENGE'
    SUCCESS = 'SUCCESS'


class LoginRequest(object):
    """Body of a POST to /api/v1/authn.

    Either a username and password, or a state token continuing an
    existing transaction; never both. Use the from_* constructors.
    """

    def __init__(self, username=None, password=None, state_token=None):
        self.username = username
        self.password = password
        self.state_token = state_token

    @classmethod
    def from_credentials(cls, username, password):
        return cls(username=username, password=password)

    @classmethod
    def from_state_token(cls, state_token):
        return cls(state_token=state_token)

    @property
    def kind(self):
        if self.state_token:
            return 'State Token'
        return 'Credentials'

    def to_dict(self):
        if self.state_token:
            return {'stateToken': self.state_token}
        return {'username': self.username, 'password': self.password}


class LoginResponse(object):
    """Decoded reply from the authn and factor verify endpoints."""

    def __init__(self, status, state_token=None, session_token=None,
                 factor_result=None, factors=None):
        self.status = status
        self.state_token = state_token
        self.session_token = session_token
        self.factor_result = factor_result
        self.factors = factors

    @classmethod
    def from_dict(cls, data):
        factor_result = data.get('factorResult')
        if factor_result is not None:
            factor_result = FactorResult(factor_result)

        factors = None
        embedded = data.get('_embedded')
        if embedded is not None and 'factors' in embedded:
            factors = [Factor.from_dict(factor)
                       for factor in embedded['factors']]

        return cls(status=LoginState(data['status']),
                   state_token=data.get('stateToken'),
                   session_token=data.get('sessionToken'),
                   factor_result=factor_result,
                   factors=factors)


class AppLink(object):
    """An application tile assigned to the user in Okta."""

    def __init__(self, label, link_url, app_name):
        self.label = label
        self.link_url = link_url
        self.app_name = app_name

    @classmethod
    def from_dict(cls, data):
        return cls(data['label'], data['linkUrl'], data['appName'])

    @property
    def is_aws(self):
        return self.app_name in (SAML_APP, SSO_APP)

    def __repr__(self):
        return '<AppLink {} ({})>'.format(self.label, self.app_name)


def extra_verification_token(html):
    """Check whether Okta served its "Extra Verification" interstitial.

    This normally happens when the device token cookie was not sent. The
    page embeds a state token that can continue the login.

    Args:
        html: String HTML returned for an app link

    Returns: The state token, or None when this is not the interstitial
    """
    soup = BeautifulSoup(html, 'html.parser')
    if soup.title is None or soup.title.string is None:
        return None
    if not EXTRA_VERIFICATION_TITLE.match(soup.title.string.strip()):
        return None

    match = STATE_TOKEN.search(html)
    if match is None:
        raise InvalidResponse('No state token found')
    return match.group(1).replace('\\x2D', '-')


class Okta(object):
    """Okta login session for one organization and user.

    Args:
        organization: Okta organization name (the foo of foo.okta.com)
        username: Okta login name
        prompt: Prompt capability for passwords, codes and choices
        keychain: Secret store capability for caching the password
        force_prompt: Ignore the cached password and ask for a new one
        client: Optional client.Client, mostly for tests
    """

    def __init__(self, organization, username, prompt, keychain,
                 force_prompt=False, client=None):
        self.organization = organization
        self.username = username
        self.base_url = BASE_URL.format(organization=organization)
        self.client = client or Client(self.base_url)
        self.prompt = prompt
        self.keychain = keychain
        self.force_prompt = force_prompt
        self.verifier = Verifier(self.post_login, prompt)

        LOG.debug('Base URL Set to: {url}'.format(url=self.base_url))

    @property
    def service(self):
        """Secret store service name the password is cached under."""
        return 'aws_okta_sts::okta::{}'.format(self.organization)

    def authenticate(self):
        """Log in and establish a session cookie.

        A wrong cached password gets exactly one fresh prompt; a second
        rejection is raised to the caller.
        """
        # Visit the homepage to get a DeviceToken (DT) cookie, used by Okta
        # to remember MFA state for this device
        self.client.get_response(self.base_url)

        password = self.password()
        try:
            session_token = self.get_session_token(
                LoginRequest.from_credentials(self.username, password))
        except AuthenticationException:
            LOG.warning('Authentication failed, re-prompting for Okta '
                        'credentials')
            password = self.prompt_password()
            session_token = self.get_session_token(
                LoginRequest.from_credentials(self.username, password))

        LOG.debug('Saving Okta credentials for {}'.format(self.base_url))
        self.keychain.set_password(self.service, self.username, password)

        self.new_session(session_token)
        LOG.info('Successfully authenticated {} to {}'.format(
            self.username, self.organization))

    def password(self):
        """Cached password, or a prompted one."""
        if not self.force_prompt:
            password = self.keychain.get_password(self.service,
                                                  self.username)
            if password:
                return password
        return self.prompt_password()

    def prompt_password(self):
        return self.prompt.password('Password for {}'.format(self.base_url))

    def post_login(self, url, body):
        """POST to an authn endpoint and decode the LoginResponse."""
        return LoginResponse.from_dict(self.client.post_json(url, body))

    def login(self, request):
        """Send the login request to Okta, without interpreting it."""
        LOG.debug('Attempting to login to {} with {}'.format(
            self.base_url, request.kind))
        return self.post_login('api/v1/authn', request.to_dict())

    def get_session_token(self, request):
        """Log in, run MFA if needed, and return the session token."""
        response = self.login(request)

        if response.status is LoginState.SUCCESS:
            if not response.session_token:
                raise InvalidResponse('Session token not found')
            return response.session_token

        if response.status is LoginState.MFA_REQUIRED:
            return self.handle_mfa_response(response)

        LOG.debug('Unhandled login status {}'.format(response.status))
        raise UnknownError('Unknown error encountered during login ({})'
                           .format(response.status.value))

    def handle_mfa_response(self, response):
        """Pick a factor, verify it, and return the resulting session token.

        Args:
            response: LoginResponse with status MFA_REQUIRED
        """
        if not response.state_token:
            raise InvalidResponse('No state token found in response')
        if response.factors is None:
            raise InvalidResponse('MFA required, but no factors found')

        factor = self.select_factor(response.factors)
        verified = self.verifier.verify(factor, response.state_token)

        if not verified.session_token:
            raise InvalidResponse('Session token not found')
        return verified.session_token

    def select_factor(self, factors):
        if not factors:
            raise NoEnrolledFactors(
                'MFA is required, but the user has no enrolled factors')
        if len(factors) == 1:
            LOG.info('Only one MFA option is available ({}), using it'.format(
                factors[0]))
            return factors[0]
        return self.prompt.select(factors, 'Choose MFA Option', str)

    def new_session(self, session_token):
        """Exchange a one time session token for a session cookie."""
        session = self.client.post_json('api/v1/sessions',
                                        {'sessionToken': session_token})
        self.set_session_id(session['id'])

    def set_session_id(self, session_id):
        self.client.cookies.set('sid', session_id,
                                domain=urlsplit(self.base_url).hostname,
                                path='/')

    def app_links(self, user_id=None):
        """Return the AppLinks for a user; the current user by default."""
        links = self.client.get_json('api/v1/users/{}/appLinks'.format(
            user_id or 'me'))
        return [AppLink.from_dict(link) for link in links]

    def get_saml_response(self, url):
        """Visit an app link and pull the SAML form out of the page.

        If Okta asks for extra verification the login is continued with the
        state token from the page and the link is visited once more.

        Args:
            url: The app link URL

        Returns: saml.SamlResponse
        """
        html = self.client.get_response(url).text

        state_token = extra_verification_token(html)
        if state_token:
            LOG.debug('No SAML found for app {}, will re-login'.format(url))
            self.get_session_token(LoginRequest.from_state_token(state_token))
            html = self.client.get_response(url).text

        return saml.extract_saml_response(html)
