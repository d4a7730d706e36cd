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
AWS credential classes; how we talk to STS to get credentials and how we
record them in the AWS shared credentials and config files.
"""
import collections
import configparser
import logging
import os
import re

import boto3
import botocore

LOG = logging.getLogger(__name__)

STS_REGION = 'us-east-1'
SSO_REGION = 'us-east-1'
SSO_SCOPES = 'sso:account:access'


class NotTemporaryCredentials(Exception):
    """Raised instead of writing or clobbering long lived keys."""


class Credentials(collections.namedtuple(
        'Credentials', ['access_key_id', 'secret_access_key',
                        'session_token', 'expiration'])):
    """An AWS key pair, optionally with a session token and expiration."""

    __slots__ = ()

    def __new__(cls, access_key_id, secret_access_key, session_token=None,
                expiration=None):
        return super(Credentials, cls).__new__(
            cls, access_key_id, secret_access_key, session_token, expiration)

    @property
    def is_temporary(self):
        return bool(self.session_token)

    @classmethod
    def from_sts(cls, creds):
        """Build from the Credentials dict STS returns."""
        return cls(creds['AccessKeyId'], creds['SecretAccessKey'],
                   creds.get('SessionToken'), creds.get('Expiration'))


def sanitize_name(name):
    """Turn an arbitrary label into a profile/session name.

    Spaces become hyphens, other punctuation is dropped and the result is
    lowercased.
    """
    name = re.sub(r'[^A-Za-z0-9_-]', '', name.replace(' ', '-'))
    name = re.sub(r'-+', '-', name)
    return name.strip('-').lower()


def sts_client():
    """Build an STS client; STS is global so the region is fixed."""
    boto_logger = logging.getLogger('botocore')
    boto_logger.setLevel(logging.WARNING)
    return boto3.client('sts', region_name=STS_REGION)


def assume_role_with_saml(role, assertion, duration_seconds=None, sts=None):
    """Use a SAML assertion to get temporary credentials for a role.

    If AWS refuses the requested duration (it is above the role's maximum)
    the call is repeated once without one, falling back to the role default.

    Args:
        role: saml.Role to assume
        assertion: Base64 SAMLResponse value
        duration_seconds: Optional requested session length
        sts: Optional boto3 STS client

    Returns: Credentials
    """
    sts = sts or sts_client()
    kwargs = {'RoleArn': role.role_arn,
              'PrincipalArn': role.provider_arn,
              'SAMLAssertion': assertion}

    LOG.debug('Assuming role: {}'.format(role.role_arn))
    if duration_seconds:
        try:
            session = sts.assume_role_with_saml(
                DurationSeconds=duration_seconds, **kwargs)
            return Credentials.from_sts(session['Credentials'])
        except botocore.exceptions.ClientError:
            LOG.warning('Error assuming {} with duration {}. Retrying with '
                        'the role default.'.format(role.role_arn,
                                                   duration_seconds))

    session = sts.assume_role_with_saml(**kwargs)
    return Credentials.from_sts(session['Credentials'])


class IniStore(object):
    """Shared plumbing for the AWS ini style files."""

    def __init__(self, filename):
        self.filename = filename
        self.config = configparser.ConfigParser(interpolation=None)
        try:
            with open(self.filename, 'r') as handle:
                self.config.read_file(handle)
        except IOError:
            LOG.debug('Unable to open {}'.format(self.filename))

    def set_section(self, section, values):
        if not self.config.has_section(section):
            self.config.add_section(section)
        for key, value in values.items():
            self.config.set(section, key, str(value))

    def save(self):
        """Write the file back out, readable only by the user."""
        directory = os.path.dirname(self.filename)
        if directory and not os.path.exists(directory):
            LOG.info('Creating missing AWS directory {}'.format(directory))
            os.makedirs(directory)

        with open(self.filename, 'w+') as handle:
            os.chmod(self.filename, 0o600)
            self.config.write(handle)


class CredentialsStore(IniStore):
    """The ~/.aws/credentials file.

    Only temporary (STS) credentials are ever written, and a profile that
    already holds long lived keys is never overwritten.
    """

    def add_profile(self, name, creds):
        """Record credentials under a profile name.

        args:
            name: The profile name to write to
            creds: Credentials
        """
        if not creds.is_temporary:
            raise NotTemporaryCredentials(
                'Refusing to write credentials without a session token '
                'to profile {}'.format(name))

        if self.config.has_section(name):
            existing = self.config[name]
            if ('aws_access_key_id' in existing and
                    'aws_session_token' not in existing):
                raise NotTemporaryCredentials(
                    "Profile '{}' does not contain STS credentials. "
                    'Ignoring'.format(name))

        self.set_section(name, {
            'aws_access_key_id': creds.access_key_id,
            'aws_secret_access_key': creds.secret_access_key,
            'aws_session_token': creds.session_token})

        LOG.info('Wrote profile "{name}" to {file}'.format(
            name=name, file=self.filename))
        if creds.expiration:
            LOG.info('Session expires at {}'.format(creds.expiration))


class ConfigStore(IniStore):
    """The ~/.aws/config file, used for Identity-Center profiles."""

    @staticmethod
    def profile_section(name):
        if name == 'default':
            return name
        return 'profile {}'.format(name)

    def is_sso_profile(self, name):
        section = self.profile_section(name)
        return (self.config.has_section(section) and
                self.config.has_option(section, 'sso_session'))

    def profile_role(self, name):
        section = self.profile_section(name)
        if not self.config.has_section(section):
            return None
        return self.config.get(section, 'sso_role_name', fallback=None)

    def add_sso_session(self, name, start_url, region=SSO_REGION,
                        scopes=SSO_SCOPES):
        self.set_section('sso-session {}'.format(name), {
            'sso_start_url': start_url,
            'sso_region': region,
            'sso_registration_scopes': scopes})

    def add_sso_profile(self, name, session_name, account_id, role_name):
        self.set_section(self.profile_section(name), {
            'sso_session': session_name,
            'sso_account_id': account_id,
            'sso_role_name': role_name})
        LOG.info('Wrote SSO profile "{name}" to {file}'.format(
            name=name, file=self.filename))
