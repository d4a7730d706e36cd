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
Turns configured profiles into credentials.

Each profile names an Okta application (by label), optionally an account
(for Identity-Center applications) and one or more acceptable role names.
The resolver matches those against what the SAML assertion or the SSO
directory actually offers, asking the user only when more than one role
fits.
"""
import collections
import concurrent.futures
import logging

from aws_okta_sts import aws, sso
from aws_okta_sts.okta import SAML_APP, SSO_APP

LOG = logging.getLogger(__name__)

BATCH_SIZE = 10
MAX_WORKERS = 10

AccountMapping = collections.namedtuple(
    'AccountMapping',
    ['account_name', 'account_id', 'role_names', 'application_name'])


class ResolutionError(Exception):
    """Base error for matching profiles to what is available."""


class NoMatchingRole(ResolutionError):
    """None of the configured role names are available."""


class AccountRequired(ResolutionError):
    """An Identity-Center profile did not name an account."""


class UnknownAccount(ResolutionError):
    """The configured account is not offered by the SSO directory."""


class UnknownApplication(ResolutionError):
    """No AWS application in Okta carries the configured label."""


def select_one(profile, candidates, name, prompt, title):
    """Pick the single candidate whose name is a configured role.

    Args:
        profile: config.Profile
        candidates: Available roles or SSO profiles
        name: Function returning a candidate's role name
        prompt: Prompt capability used only for ambiguous matches
        title: Heading shown when asking the user

    Returns: The chosen candidate
    """
    matches = [c for c in candidates if name(c) in profile.roles]
    if not matches:
        raise NoMatchingRole(
            'No matching role found for profile {} (wanted {}, '
            'available {})'.format(profile.name, ', '.join(profile.roles),
                                   ', '.join(name(c) for c in candidates)))
    if len(matches) == 1:
        return matches[0]
    return prompt.select(matches, title, name)


def select_role(profile, roles, prompt):
    return select_one(profile, roles, lambda role: role.role_name, prompt,
                      'Choose a role for {}'.format(profile.name))


def select_sso_profile(profile, profiles, prompt):
    return select_one(profile, profiles, lambda p: p.name, prompt,
                      'Choose a role for {}'.format(profile.name))


def select_app_instance(profile, app_instances):
    """Find the SSO app instance for the profile's configured account."""
    if not profile.account:
        raise AccountRequired(
            'AWS SSO profile {} must specify an account'.format(
                profile.name))
    for instance in app_instances:
        if instance.account_name() == profile.account:
            return instance
    raise UnknownAccount('Could not find account {} for profile {}'.format(
        profile.account, profile.name))


def find_app_link(profile, links):
    """Find the Okta app link for a profile; SAML apps win over SSO apps."""
    for app_name in (SAML_APP, SSO_APP):
        for link in links:
            if link.app_name == app_name and \
                    link.label == profile.application:
                return link
    raise UnknownApplication(
        'Could not find AWS application {} for profile {}'.format(
            profile.application, profile.name))


class Resolver(object):
    """Resolves profiles to credentials through one Okta session.

    Args:
        okta: Authenticated okta.Okta
        prompt: Prompt capability for ambiguous choices
        sts: Optional boto3 STS client
    """

    def __init__(self, okta, prompt, sts=None):
        self.okta = okta
        self.prompt = prompt
        self.sts = sts
        self._links = None

    def app_links(self):
        if self._links is None:
            self._links = [link for link in self.okta.app_links()
                           if link.is_aws]
            LOG.debug('AWS app links: {}'.format(self._links))
        return self._links

    def credentials(self, profile, links=None):
        """Get credentials for a single profile.

        Returns: aws.Credentials
        """
        link = find_app_link(profile, links or self.app_links())
        if link.app_name == SAML_APP:
            return self.saml_credentials(profile, link)
        return self.sso_credentials(profile, link)

    def saml_credentials(self, profile, link):
        saml_response = self.okta.get_saml_response(link.link_url)
        role = select_role(profile, saml_response.roles(), self.prompt)
        LOG.debug('Found role {} for profile {}'.format(role, profile.name))
        return aws.assume_role_with_saml(role, saml_response.saml,
                                         profile.duration_seconds,
                                         sts=self.sts)

    def sso_client(self, link):
        """Log into the SSO portal behind an amazon_aws_sso app link.

        Returns: Tuple of (sso.OrgAuth, sso.SsoClient)
        """
        saml_response = self.okta.get_saml_response(link.link_url)
        org_auth = sso.bridge(saml_response)
        return org_auth, sso.SsoClient.from_org_auth(org_auth)

    def sso_credentials(self, profile, link):
        _, client = self.sso_client(link)

        instance = select_app_instance(profile, client.app_instances())
        account_id = instance.account_id()
        if account_id is None:
            raise ResolutionError('No account ID found in {}'.format(
                instance.name))

        chosen = select_sso_profile(profile, client.profiles(instance.id),
                                    self.prompt)
        LOG.debug('Found SSO role {} in {} for profile {}'.format(
            chosen.name, instance.name, profile.name))
        return client.credentials(account_id, chosen.name)

    def resolve_all(self, profiles):
        """Resolve many profiles concurrently.

        A failing profile is logged and left out; the others are
        unaffected.

        Returns: List of (profile name, aws.Credentials), in profile order
        """
        links = self.app_links()
        with concurrent.futures.ThreadPoolExecutor(
                max_workers=MAX_WORKERS) as executor:
            futures = [(profile, executor.submit(self.credentials, profile,
                                                 links))
                       for profile in profiles]

        results = []
        for profile, future in futures:
            try:
                results.append((profile.name, future.result()))
            except Exception as err:
                LOG.error('Error getting credentials for profile {}: '
                          '{}'.format(profile.name, err))
        return results

    def account_mapping(self, client, instance, application_name):
        profiles = client.profiles(instance.id)
        if not profiles:
            raise sso.SsoError('No roles found for app instance: {}'.format(
                instance.name))

        account_name = instance.account_name()
        if account_name is None:
            raise sso.SsoError(
                'No account name found for app instance: {}'.format(
                    instance.name))

        return AccountMapping(account_name, instance.account_id(),
                              sorted(p.name for p in profiles),
                              application_name)

    def discover_accounts(self, link):
        """List every account and role behind an amazon_aws_sso app link.

        Profiles are fetched concurrently, BATCH_SIZE accounts at a time.

        Returns: Tuple of (sso.OrgAuth, list of AccountMapping)
        """
        org_auth, client = self.sso_client(link)
        accounts = [instance for instance in client.app_instances()
                    if instance.application_name == sso.AWS_ACCOUNT_APP]

        total = len(accounts)
        mappings = []
        with concurrent.futures.ThreadPoolExecutor(
                max_workers=BATCH_SIZE) as executor:
            for start in range(0, total, BATCH_SIZE):
                batch = accounts[start:start + BATCH_SIZE]
                LOG.info('Processing accounts {}-{}/{}'.format(
                    start + 1, start + len(batch), total))
                futures = [executor.submit(self.account_mapping, client,
                                           instance, link.label)
                           for instance in batch]
                mappings.extend(future.result() for future in futures)

        LOG.info('Processed {}/{} accounts'.format(total, total))
        return org_auth, mappings
