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
"""Keyman: refreshes AWS credentials for every configured Okta profile."""
import collections
import getpass
import logging
import traceback

from aws_okta_sts import aws, okta, sso
from aws_okta_sts.config import (Config, ConfigError, Settings,
                                 organizations)
from aws_okta_sts.keychain import Keychain
from aws_okta_sts.metadata import __desc__, __version__
from aws_okta_sts.prompt import Prompt
from aws_okta_sts.resolver import Resolver

LOG = logging.getLogger(__name__)


class Keyman(object):
    """Main class for the tool."""

    def __init__(self, argv, settings=None, prompt=None, keychain=None):
        self.log = LOG
        self.config = Config(argv)
        self.config.parse_args()
        if self.config.debug:
            logging.getLogger('aws_okta_sts').setLevel(logging.DEBUG)
        self.settings = settings or Settings.from_environ()
        self.prompt = prompt or Prompt()
        self.keychain = keychain or Keychain()

    def main(self):
        """Execute primary logic path; returns the process exit code."""
        self.log.info('{} v{}'.format(__desc__, __version__))
        try:
            if self.config.init_sso:
                return self.init_sso()
            return self.refresh()

        except ConfigError as err:
            self.log.fatal('Configuration error: {}'.format(err))
            return 1

        except KeyboardInterrupt:
            # Allow users to exit cleanly at any time.
            print('')
            self.log.info('Exiting after keyboard interrupt.')
            return 1

        except Exception as err:
            self.log.fatal('Unhandled exception: {}'.format(err))
            self.log.debug(traceback.format_exc())
            return 5

    def organizations(self):
        orgs = organizations(self.settings, self.config.organizations)
        if not orgs:
            raise ConfigError('No organizations found matching {} in '
                              '{}'.format(self.config.organizations,
                                          self.settings.home))
        return orgs

    def okta_session(self, organization):
        """Log into an organization's Okta, prompting for a username if the
        organization file has none."""
        username = organization.username or self.prompt.text(
            'Username for {}'.format(organization.name),
            default=getpass.getuser())
        session = okta.Okta(organization.name, username, self.prompt,
                            self.keychain,
                            force_prompt=self.config.force_new)
        session.authenticate()
        return session

    def login(self, organization):
        """Log into an organization, or log why not and return None."""
        try:
            return self.okta_session(organization)
        except Exception as err:
            self.log.error('Unable to log into {}: {}'.format(
                organization.name, err))
            self.log.debug(traceback.format_exc())
            return None

    def profiles(self, organization, aws_config):
        """Matching profiles, minus those already set up as SSO profiles."""
        profiles = []
        for profile in organization.matching_profiles(self.config.profiles):
            if aws_config.is_sso_profile(profile.name):
                self.log.warning(
                    "Skipping profile '{}'; it already exists as an SSO "
                    'profile in {}. Rename one of them to avoid the '
                    'conflict.'.format(profile.name,
                                       self.settings.config_file))
                continue
            profiles.append(profile)
        return profiles

    def refresh_organization(self, organization, profiles, store):
        """Fetch and record one organization's credentials.

        Returns: True when the organization's credentials were fetched
        """
        session = self.login(organization)
        if session is None:
            return False

        try:
            results = Resolver(session, self.prompt).resolve_all(profiles)
        except Exception as err:
            self.log.error('Unable to fetch AWS applications for {}: '
                           '{}'.format(organization.name, err))
            self.log.debug(traceback.format_exc())
            return False

        for name, creds in results:
            try:
                store.add_profile(name, creds)
            except aws.NotTemporaryCredentials as err:
                self.log.warning(err)
        return True

    def refresh(self):
        """Fetch credentials for every matching profile and save them.

        Credentials fetched before a failure or an interrupt are still
        written out.
        """
        orgs = self.organizations()
        store = aws.CredentialsStore(self.settings.credentials_file)
        aws_config = aws.ConfigStore(self.settings.config_file)
        failed = False

        try:
            for organization in orgs:
                profiles = self.profiles(organization, aws_config)
                if not profiles:
                    self.log.info('No profiles to refresh for {}'.format(
                        organization.name))
                    continue
                if not self.refresh_organization(organization, profiles,
                                                 store):
                    failed = True
        finally:
            store.save()

        return 1 if failed else 0

    def organization_sso_sessions(self, organization, session):
        sessions = []
        resolver = Resolver(session, self.prompt)
        for link in resolver.app_links():
            if link.app_name != okta.SSO_APP:
                continue
            self.log.info('Fetching accounts and roles for {}'.format(
                link.label))
            org_auth, mappings = resolver.discover_accounts(link)
            sessions.append((aws.sanitize_name(link.label),
                             sso.start_url(org_auth.org_id),
                             sorted(mappings,
                                    key=lambda m: m.account_name)))
        return sessions

    def sso_sessions(self):
        """Discover the accounts behind every Identity-Center app link.

        Returns: Tuple of (list of (session name, start URL,
        AccountMappings), whether any organization failed)
        """
        sessions = []
        failed = False
        for organization in self.organizations():
            session = self.login(organization)
            if session is None:
                failed = True
                continue
            try:
                sessions.extend(self.organization_sso_sessions(organization,
                                                               session))
            except Exception as err:
                self.log.error('Unable to discover SSO accounts for {}: '
                               '{}'.format(organization.name, err))
                self.log.debug(traceback.format_exc())
                failed = True
        return sessions, failed

    def choose_sso_role(self, aws_config, name, role_names):
        if len(role_names) == 1:
            return role_names[0]
        existing = aws_config.profile_role(name)
        if existing in role_names:
            return existing
        return self.prompt.select(role_names,
                                  'Choose a role for {}'.format(name))

    def init_sso(self):
        """Write an SSO session per Identity-Center app and a profile per
        account into the AWS config file."""
        sessions, failed = self.sso_sessions()
        if not sessions:
            if failed:
                return 1
            raise sso.SsoError('No AWS SSO applications found')

        # Account names used by more than one session get prefixed
        owners = collections.defaultdict(set)
        for session_name, _, mappings in sessions:
            for mapping in mappings:
                owners[aws.sanitize_name(mapping.account_name)].add(
                    session_name)

        aws_config = aws.ConfigStore(self.settings.config_file)
        written = 0
        for session_name, start_url, mappings in sessions:
            aws_config.add_sso_session(session_name, start_url)
            for mapping in mappings:
                if mapping.account_id is None or not mapping.role_names:
                    continue
                name = aws.sanitize_name(mapping.account_name)
                if len(owners[name]) > 1:
                    name = '{}-{}'.format(session_name, name)
                role = self.choose_sso_role(aws_config, name,
                                            mapping.role_names)
                aws_config.add_sso_profile(name, session_name,
                                           mapping.account_id, role)
                written += 1

        aws_config.save()
        self.log.info('Configured {} SSO profiles in {}'.format(
            written, self.settings.config_file))
        return 1 if failed else 0
