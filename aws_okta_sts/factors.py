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
"""Okta MFA factors and the verification flows for the supported kinds."""
import logging
import time
from enum import Enum
from urllib.parse import urlsplit, urlunsplit

LOG = logging.getLogger(__name__)

# Push verification is a client side poll against the verify link
PUSH_POLL_INTERVAL = 0.1


class VerificationError(Exception):
    """MFA verification could not be completed."""


class UnsupportedFactor(VerificationError):
    """The factor kind has no verification flow."""

    def __init__(self, factor):
        self.factor = factor
        super(UnsupportedFactor, self).__init__(
            'Unsupported MFA method ({})'.format(factor))


class NoVerifyLink(VerificationError):
    """The factor carries no usable verify link."""


class FactorFailed(VerificationError):
    """Okta reported a terminal, unsuccessful factor result."""

    def __init__(self, factor, result):
        self.factor = factor
        self.result = result
        super(FactorFailed, self).__init__(
            'Failed to verify with {} ({})'.format(factor, result.name))


class FactorKind(Enum):
    """Okta `factorType` values."""

    PUSH = 'push'
    SMS = 'sms'
    CALL = 'call'
    TOKEN = 'token'
    TOTP = 'token:software:totp'
    HOTP = 'token:hardware'
    QUESTION = 'question'
    WEB = 'web'
    WEBAUTHN = 'webauthn'


class FactorResult(Enum):
    """Okta `factorResult` values."""

    CANCELLED = 'CANCELLED'
    CHALLENGE = 'CHALLENGE'
    ERROR = 'ERROR'
    FAILED = 'FAILED'
    PASSCODE_REPLAYED = 'PASSCODE_REPLAYED'
    REJECTED = 'REJECTED'
    SUCCESS = 'SUCCESS'
    TIMEOUT = 'TIMEOUT'
    TIME_WINDOW_EXCEEDED = 'TIME_WINDOW_EXCEEDED'
    WAITING = 'WAITING'


DESCRIPTIONS = {
    FactorKind.PUSH: 'Okta Verify Push',
    FactorKind.SMS: 'Okta SMS to {phone}',
    FactorKind.CALL: 'Okta Call to {phone}',
    FactorKind.TOKEN: 'Okta One-time Password',
    FactorKind.TOTP: 'Okta Time-based One-time Password (from {provider})',
    FactorKind.HOTP: 'Okta Hardware One-time Password',
    FactorKind.QUESTION: 'Question: {question}',
    FactorKind.WEB: 'Okta Web',
    FactorKind.WEBAUTHN: 'Security Key or Biometric Authenticator',
}


class Factor(object):
    """One enrolled MFA factor, tagged by its kind.

    The kind decides which profile fields are meaningful (a phone number
    for SMS and Call, a question for Question) and whether this tool can
    verify it at all.
    """

    def __init__(self, kind, factor_id, provider, status=None, profile=None,
                 links=None):
        self.kind = kind
        self.id = factor_id
        self.provider = provider
        self.status = status
        self.profile = profile or {}
        self.links = links or {}

    @classmethod
    def from_dict(cls, data):
        """Build a Factor from an Okta `_embedded.factors` entry.

        Raises:
            UnsupportedFactor: The factorType is not one Okta documents
        """
        try:
            kind = FactorKind(data['factorType'])
        except ValueError:
            raise UnsupportedFactor(data['factorType'])

        return cls(kind=kind,
                   factor_id=data['id'],
                   provider=data.get('provider'),
                   status=data.get('status'),
                   profile=data.get('profile'),
                   links=data.get('_links'))

    def __str__(self):
        return DESCRIPTIONS[self.kind].format(
            phone=self.profile.get('phoneNumber', 'unknown number'),
            provider=self.provider,
            question=self.profile.get('questionText',
                                      self.profile.get('question', '')))

    def __repr__(self):
        return '<Factor {} {} ({})>'.format(self.kind.value, self.id,
                                            self.provider)

    def verify_url(self):
        """Return the href of the `verify` link.

        Okta sends either a single link object or a list of them; the first
        entry of a list is used.
        """
        link = self.links.get('verify')
        if isinstance(link, list):
            link = link[0] if link else None
        if not link or not link.get('href'):
            raise NoVerifyLink('No verify link found for {}'.format(self))
        return link['href']


class Verifier(object):
    """Run the verification protocol for a chosen factor.

    Args:
        post: Callable(url, body) returning an okta.LoginResponse
        prompt: Prompt capability used to ask for one-time codes
        poll_interval: Seconds to wait between push status checks
    """

    def __init__(self, post, prompt, poll_interval=PUSH_POLL_INTERVAL):
        self.post = post
        self.prompt = prompt
        self.poll_interval = poll_interval
        self.handlers = {
            FactorKind.PUSH: self.verify_push,
            FactorKind.SMS: self.verify_sms,
            FactorKind.TOTP: self.verify_totp,
        }

    def verify(self, factor, state_token):
        """Verify a factor, returning the final login response."""
        handler = self.handlers.get(factor.kind)
        if handler is None:
            raise UnsupportedFactor(factor)
        LOG.debug('Verifying factor {!r}'.format(factor))
        return handler(factor, state_token)

    def verify_push(self, factor, state_token):
        """Trigger an Okta Verify push and poll until it is answered."""
        url = factor.verify_url()
        body = {'stateToken': state_token}

        LOG.warning('Okta Verify Push being sent... 📱')
        response = self.post(url, body)

        while response.factor_result is FactorResult.WAITING:
            time.sleep(self.poll_interval)
            response = self.post(url, body)

        if response.factor_result in (None, FactorResult.SUCCESS):
            return response
        raise FactorFailed(factor, response.factor_result)

    def verify_sms(self, factor, state_token):
        """Have Okta send an SMS code, then submit what the user types."""
        url = factor.verify_url()

        LOG.warning('Okta SMS being requested...')
        response = self.post(url, {'stateToken': state_token})
        if not response.state_token:
            raise VerificationError(
                'No state token found in factor prompt response')

        pass_code = self.prompt.password(str(factor))
        return self.post(url, {'stateToken': response.state_token,
                               'passCode': pass_code})

    def verify_totp(self, factor, state_token):
        """Submit a code from an authenticator app; one attempt only."""
        parts = urlsplit(factor.verify_url())
        url = urlunsplit(parts._replace(query='rememberDevice'))

        pass_code = self.prompt.password(str(factor))
        return self.post(url, {'stateToken': state_token,
                               'passCode': pass_code})
