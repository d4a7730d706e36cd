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
"""Configuration: file locations, organization files and CLI arguments."""
import argparse
import fnmatch
import glob
import logging
import os

import yaml

from aws_okta_sts.metadata import __version__

LOG = logging.getLogger(__name__)

CONFIG_EXTENSION = '.yml'


class ConfigError(ValueError):
    """An organization file is missing something or malformed."""


def environ_path(environ, name, default):
    value = environ.get(name)
    if not value:
        value = default
    return os.path.expanduser(value)


class Settings(object):
    """Process wide file locations, resolved once at startup.

    Args:
        home: Directory holding <organization>.yml files
        credentials_file: AWS shared credentials file
        config_file: AWS config file
    """

    def __init__(self, home, credentials_file, config_file):
        self.home = home
        self.credentials_file = credentials_file
        self.config_file = config_file

    @classmethod
    def from_environ(cls, environ=None):
        """Build Settings from environment overrides and defaults.

        Empty variables are treated as unset.
        """
        if environ is None:
            environ = os.environ
        return cls(
            home=environ_path(environ, 'OKTAWS_HOME', '~/.oktaws'),
            credentials_file=environ_path(environ,
                                          'AWS_SHARED_CREDENTIALS_FILE',
                                          '~/.aws/credentials'),
            config_file=environ_path(environ, 'AWS_CONFIG_FILE',
                                     '~/.aws/config'))


def role_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(role) for role in value]


class Profile(object):
    """A named AWS profile to fetch credentials for.

    Args:
        name: AWS profile name to write
        application: Label of the Okta application
        roles: Acceptable role names
        account: Account name, required for Identity-Center applications
        duration_seconds: Requested session length for SAML roles
    """

    def __init__(self, name, application, roles, account=None,
                 duration_seconds=None):
        self.name = name
        self.application = application
        self.roles = roles
        self.account = account
        self.duration_seconds = duration_seconds

    @classmethod
    def from_entry(cls, name, entry, default_roles=None,
                   default_duration=None):
        """Build a Profile from its organization file entry.

        A bare string names the application; a mapping may also set
        account, role and duration_seconds. Organization defaults fill in
        what the entry leaves out.
        """
        if isinstance(entry, str):
            entry = {'application': entry}
        if not isinstance(entry, dict) or 'application' not in entry:
            raise ConfigError('Profile {} must name an application'.format(
                name))

        roles = role_list(entry.get('role')) or list(default_roles or [])
        if not roles:
            raise ConfigError('No role found for profile {}'.format(name))

        return cls(name, entry['application'], roles,
                   account=entry.get('account'),
                   duration_seconds=entry.get('duration_seconds',
                                              default_duration))

    def __repr__(self):
        return '<Profile {}>'.format(self.name)


class Organization(object):
    """An Okta organization and the profiles configured for it."""

    def __init__(self, name, username, profiles):
        self.name = name
        self.username = username
        self.profiles = profiles

    @classmethod
    def from_dict(cls, name, data):
        if not isinstance(data, dict):
            raise ConfigError('Organization {} is not a mapping'.format(name))

        profiles = data.get('profiles')
        if not isinstance(profiles, dict) or not profiles:
            raise ConfigError('No profiles found for organization {}'.format(
                name))

        default_roles = role_list(data.get('role'))
        default_duration = data.get('duration_seconds')
        return cls(name, data.get('username'),
                   [Profile.from_entry(profile_name, entry, default_roles,
                                       default_duration)
                    for profile_name, entry in profiles.items()])

    @classmethod
    def from_file(cls, path):
        name = os.path.basename(path)[:-len(CONFIG_EXTENSION)]
        LOG.debug('Loading organization {} from {}'.format(name, path))
        try:
            with open(path, 'r') as handle:
                data = yaml.safe_load(handle)
        except yaml.YAMLError as err:
            raise ConfigError('Unable to parse {}: {}'.format(path, err))
        return cls.from_dict(name, data)

    def matching_profiles(self, pattern):
        return [profile for profile in self.profiles
                if fnmatch.fnmatch(profile.name, pattern)]


def organizations(settings, pattern='*'):
    """Load every organization file in the home directory matching a glob.

    Returns: List of Organization, sorted by name
    """
    paths = glob.glob(os.path.join(settings.home,
                                   '{}{}'.format(pattern, CONFIG_EXTENSION)))
    return [Organization.from_file(path) for path in sorted(paths)]


class Config(object):
    """Command line options."""

    def __init__(self, argv):
        self.argv = argv
        self.organizations = '*'
        self.profiles = '*'
        self.force_new = False
        self.init_sso = False
        self.debug = False

    @staticmethod
    def usage_epilog():
        """Epilog string for argparse."""
        epilog = (
            '** Configuration **\n'
            'Each Okta organization is configured in a YAML file named\n'
            'after it in ~/.oktaws (or $OKTAWS_HOME), for example\n'
            '~/.oktaws/foobar.yml for https://foobar.okta.com:\n'
            '\n'
            '\tusername: bob@foobar.com\n'
            '\trole: ReadOnly\n'
            '\tprofiles:\n'
            '\t  production: Production AWS\n'
            '\t  sandbox:\n'
            '\t    application: AWS SSO\n'
            '\t    account: sandbox\n'
            '\t    role: [Admin, PowerUser]\n')
        return epilog

    def parse_args(self):
        """Parse the CLI options onto this object."""
        arg_parser = argparse.ArgumentParser(
            prog=self.argv[0],
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=self.usage_epilog(),
            description='AWS Okta STS v{}'.format(__version__))

        arg_parser.add_argument('organizations', type=str, nargs='?',
                                default='*',
                                help=('Okta organizations to refresh, as a '
                                      'glob over the configured organization '
                                      'names (default: all)'))
        arg_parser.add_argument('-p', '--profiles', type=str, default='*',
                                help=('Profiles to refresh, as a glob over '
                                      'the configured profile names'))
        arg_parser.add_argument('-f', '--force-new', action='store_true',
                                help=('Ignore the cached Okta password and '
                                      'prompt for a new one'))
        arg_parser.add_argument('-s', '--init-sso', action='store_true',
                                help=('Write AWS SSO sessions and profiles '
                                      'for every Identity-Center account '
                                      'into the AWS config file'))
        arg_parser.add_argument('-D', '--debug', action='store_true',
                                help='Enable DEBUG logging')
        arg_parser.add_argument('-V', '--version', action='version',
                                version=__version__)

        config = arg_parser.parse_args(args=self.argv[1:])
        for key, value in vars(config).items():
            setattr(self, key, value)
