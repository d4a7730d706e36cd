import configparser
import logging
import os
import shutil
import tempfile
import unittest
from unittest import mock

import requests

from aws_okta_sts import aws, keyman, okta, resolver, sso
from aws_okta_sts.client import AuthenticationException, OktaError
from aws_okta_sts.config import Organization, Profile, Settings

CREDS = aws.Credentials('AKIA', 'secret', 'token')

SSO_CONFIG = '''[profile sandbox]
sso_session = my-sso
sso_account_id = 123456789012
sso_role_name = Admin
'''


def organization(name='foobar', username='bob', profiles=None):
    if profiles is None:
        profiles = [Profile('prod', 'Production AWS', ['Admin']),
                    Profile('sandbox', 'AWS SSO', ['Admin'],
                            account='sandbox')]
    return Organization(name, username, profiles)


class KeymanTestCase(unittest.TestCase):

    def setUp(self):
        self.dir = tempfile.mkdtemp()
        self.settings = Settings(self.dir,
                                 os.path.join(self.dir, 'credentials'),
                                 os.path.join(self.dir, 'config'))
        self.prompt = mock.MagicMock(name='prompt')
        self.keychain = mock.MagicMock(name='keychain')

        patcher = mock.patch('aws_okta_sts.keyman.organizations')
        self.organizations_mock = patcher.start()
        self.addCleanup(patcher.stop)
        self.organizations_mock.return_value = [organization()]

        patcher = mock.patch('aws_okta_sts.keyman.okta.Okta')
        self.okta_mock = patcher.start()
        self.addCleanup(patcher.stop)

        patcher = mock.patch('aws_okta_sts.keyman.Resolver')
        self.resolver_mock = patcher.start()
        self.addCleanup(patcher.stop)
        self.resolver = self.resolver_mock.return_value

    def tearDown(self):
        shutil.rmtree(self.dir)

    def keyman(self, *args):
        return keyman.Keyman(['aws_okta_sts'] + list(args),
                             settings=self.settings, prompt=self.prompt,
                             keychain=self.keychain)

    def read(self, filename):
        config = configparser.ConfigParser(interpolation=None)
        config.read(filename)
        return config


class KeymanTest(KeymanTestCase):

    def test_init_debug(self):
        logger = logging.getLogger('aws_okta_sts')
        level = logger.level
        self.addCleanup(logger.setLevel, level)

        self.keyman('-D')

        self.assertEqual(logger.level, logging.DEBUG)

    def test_main_refresh(self):
        self.resolver.resolve_all.return_value = [('prod', CREDS),
                                                  ('sandbox', CREDS)]

        self.assertEqual(self.keyman('foo*', '-p', '*', '-f').main(), 0)

        self.organizations_mock.assert_called_once_with(self.settings,
                                                        'foo*')
        self.okta_mock.assert_called_once_with(
            'foobar', 'bob', self.prompt, self.keychain, force_prompt=True)
        self.okta_mock.return_value.authenticate.assert_called_once_with()
        written = self.read(self.settings.credentials_file)
        self.assertEqual(written['prod']['aws_session_token'], 'token')
        self.assertEqual(written['sandbox']['aws_access_key_id'], 'AKIA')

    def test_refresh_profile_glob(self):
        self.resolver.resolve_all.return_value = []

        self.keyman('-p', 'pr*').main()

        profiles = self.resolver.resolve_all.call_args[0][0]
        self.assertEqual([p.name for p in profiles], ['prod'])

    def test_refresh_skips_sso_profiles(self):
        with open(self.settings.config_file, 'w') as handle:
            handle.write(SSO_CONFIG)
        self.resolver.resolve_all.return_value = [('prod', CREDS)]

        with self.assertLogs('aws_okta_sts.keyman', level='WARNING') as logs:
            self.keyman().main()

        profiles = self.resolver.resolve_all.call_args[0][0]
        self.assertEqual([p.name for p in profiles], ['prod'])
        self.assertIn("Skipping profile 'sandbox'", logs.output[0])

    def test_refresh_login_failure_continues(self):
        self.organizations_mock.return_value = [organization('broken'),
                                                organization('foobar')]
        self.okta_mock.return_value.authenticate.side_effect = [
            AuthenticationException(401, 'bad'), None]
        self.resolver.resolve_all.return_value = [('prod', CREDS)]

        with self.assertLogs('aws_okta_sts.keyman', level='ERROR'):
            self.assertEqual(self.keyman().main(), 1)

        self.assertEqual(self.resolver.resolve_all.call_count, 1)
        written = self.read(self.settings.credentials_file)
        self.assertTrue(written.has_section('prod'))

    def test_refresh_connection_error_keeps_earlier_org(self):
        self.organizations_mock.return_value = [organization('foobar'),
                                                organization('mistyped')]
        self.okta_mock.return_value.authenticate.side_effect = [
            None, requests.exceptions.ConnectionError('dns failure')]
        self.resolver.resolve_all.return_value = [('prod', CREDS)]

        with self.assertLogs('aws_okta_sts.keyman', level='ERROR') as logs:
            self.assertEqual(self.keyman().main(), 1)

        self.assertIn('Unable to log into mistyped: dns failure',
                      logs.output[0])
        written = self.read(self.settings.credentials_file)
        self.assertTrue(written.has_section('prod'))

    def test_refresh_app_error_keeps_earlier_org(self):
        self.organizations_mock.return_value = [organization('foobar'),
                                                organization('broken')]
        self.resolver.resolve_all.side_effect = [
            [('prod', CREDS)], OktaError(403, 'forbidden')]

        with self.assertLogs('aws_okta_sts.keyman', level='ERROR') as logs:
            self.assertEqual(self.keyman().main(), 1)

        self.assertIn('Unable to fetch AWS applications for broken',
                      logs.output[0])
        self.assertNotIn('log into', logs.output[0])
        written = self.read(self.settings.credentials_file)
        self.assertTrue(written.has_section('prod'))

    def test_refresh_interrupt_keeps_fetched_credentials(self):
        self.organizations_mock.return_value = [organization('foobar'),
                                                organization('other')]
        self.resolver.resolve_all.side_effect = [[('prod', CREDS)],
                                                 KeyboardInterrupt]

        with mock.patch('builtins.print'):
            self.assertEqual(self.keyman().main(), 1)

        written = self.read(self.settings.credentials_file)
        self.assertTrue(written.has_section('prod'))

    def test_refresh_keeps_static_profile(self):
        with open(self.settings.credentials_file, 'w') as handle:
            handle.write('[prod]\naws_access_key_id = AKIASTATIC\n'
                         'aws_secret_access_key = static\n')
        self.resolver.resolve_all.return_value = [('prod', CREDS)]

        with self.assertLogs('aws_okta_sts.keyman', level='WARNING'):
            self.assertEqual(self.keyman().main(), 0)

        written = self.read(self.settings.credentials_file)
        self.assertEqual(written['prod']['aws_access_key_id'], 'AKIASTATIC')

    def test_okta_session_prompts_username(self):
        self.prompt.text.return_value = 'alice'

        self.keyman().okta_session(organization(username=None))

        self.prompt.text.assert_called_once_with('Username for foobar',
                                                 default=mock.ANY)
        self.assertEqual(self.okta_mock.call_args[0][1], 'alice')

    def test_main_no_organizations(self):
        self.organizations_mock.return_value = []

        self.assertEqual(self.keyman().main(), 1)

    def test_main_login_error(self):
        self.okta_mock.return_value.authenticate.side_effect = \
            okta.UnknownError('Unknown error encountered during login')

        self.assertEqual(self.keyman('--init-sso').main(), 1)

    def test_main_keyboard_interrupt(self):
        self.resolver.resolve_all.side_effect = KeyboardInterrupt

        with mock.patch('builtins.print'):
            self.assertEqual(self.keyman().main(), 1)

    def test_main_unhandled_exception(self):
        self.organizations_mock.side_effect = RuntimeError('boom')

        self.assertEqual(self.keyman().main(), 5)


class InitSsoTest(KeymanTestCase):

    def setUp(self):
        super(InitSsoTest, self).setUp()
        self.resolver.app_links.return_value = [
            okta.AppLink('Production AWS', 'https://x/saml', 'amazon_aws'),
            okta.AppLink('My AWS SSO', 'https://x/sso', 'amazon_aws_sso')]
        self.resolver.discover_accounts.return_value = (
            sso.OrgAuth('d-1234567890', 'AUTHCODE'),
            [resolver.AccountMapping('sandbox', '222222222222',
                                     ['AdministratorAccess'], 'My AWS SSO'),
             resolver.AccountMapping('production', '111111111111',
                                     ['AdministratorAccess', 'ReadOnly'],
                                     'My AWS SSO'),
             resolver.AccountMapping('no-id', None, ['ReadOnly'],
                                     'My AWS SSO')])

    def test_init_sso(self):
        self.prompt.select.return_value = 'ReadOnly'

        self.assertEqual(self.keyman('--init-sso').main(), 0)

        self.assertEqual(self.resolver.discover_accounts.call_count, 1)
        written = self.read(self.settings.config_file)
        self.assertEqual(
            written['sso-session my-aws-sso']['sso_start_url'],
            'https://d-1234567890.awsapps.com/start')
        self.assertEqual(dict(written['profile sandbox']), {
            'sso_session': 'my-aws-sso',
            'sso_account_id': '222222222222',
            'sso_role_name': 'AdministratorAccess'})
        self.assertEqual(written['profile production']['sso_role_name'],
                         'ReadOnly')
        self.assertFalse(written.has_section('profile no-id'))
        self.prompt.select.assert_called_once_with(
            ['AdministratorAccess', 'ReadOnly'],
            'Choose a role for production')

    def test_init_sso_keeps_existing_role(self):
        with open(self.settings.config_file, 'w') as handle:
            handle.write('[profile production]\nsso_session = my-aws-sso\n'
                         'sso_role_name = AdministratorAccess\n')

        self.keyman('--init-sso').main()

        self.prompt.select.assert_not_called()
        written = self.read(self.settings.config_file)
        self.assertEqual(written['profile production']['sso_role_name'],
                         'AdministratorAccess')

    def test_init_sso_prefixes_shared_names(self):
        self.resolver.app_links.return_value = [
            okta.AppLink('SSO One', 'https://x/1', 'amazon_aws_sso'),
            okta.AppLink('SSO Two', 'https://x/2', 'amazon_aws_sso')]
        self.resolver.discover_accounts.side_effect = [
            (sso.OrgAuth('d-1', 'A'),
             [resolver.AccountMapping('shared', '1', ['Admin'], 'SSO One'),
              resolver.AccountMapping('only-one', '2', ['Admin'],
                                      'SSO One')]),
            (sso.OrgAuth('d-2', 'B'),
             [resolver.AccountMapping('shared', '3', ['Admin'], 'SSO Two')])]

        self.keyman('--init-sso').main()

        written = self.read(self.settings.config_file)
        self.assertEqual(written['profile sso-one-shared']['sso_account_id'],
                         '1')
        self.assertEqual(written['profile sso-two-shared']['sso_account_id'],
                         '3')
        self.assertEqual(written['profile only-one']['sso_session'],
                         'sso-one')

    def test_init_sso_login_failure_continues(self):
        self.organizations_mock.return_value = [organization('mistyped'),
                                                organization('foobar')]
        self.okta_mock.return_value.authenticate.side_effect = [
            requests.exceptions.ConnectionError('dns failure'), None]
        self.prompt.select.return_value = 'ReadOnly'

        with self.assertLogs('aws_okta_sts.keyman', level='ERROR'):
            self.assertEqual(self.keyman('--init-sso').main(), 1)

        written = self.read(self.settings.config_file)
        self.assertTrue(written.has_section('sso-session my-aws-sso'))

    def test_init_sso_discovery_failure(self):
        self.resolver.discover_accounts.side_effect = sso.DirectoryError(
            403, 'forbidden')

        with self.assertLogs('aws_okta_sts.keyman', level='ERROR') as logs:
            self.assertEqual(self.keyman('--init-sso').main(), 1)

        self.assertIn('Unable to discover SSO accounts for foobar',
                      logs.output[0])

    def test_init_sso_no_sso_apps(self):
        self.resolver.app_links.return_value = [
            okta.AppLink('Production AWS', 'https://x/saml', 'amazon_aws')]

        self.assertEqual(self.keyman('--init-sso').main(), 5)
