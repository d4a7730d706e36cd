import os
import shutil
import tempfile
import unittest

from aws_okta_sts import config

ORGANIZATION = '''
username: bob@foobar.com
role: ReadOnly
duration_seconds: 3600
profiles:
  production: Production AWS
  staging:
    application: Staging AWS
    role: [Admin, PowerUser]
    duration_seconds: 43200
  sandbox:
    application: AWS SSO
    account: sandbox
    role: AdministratorAccess
'''


class SettingsTest(unittest.TestCase):

    def test_defaults(self):
        settings = config.Settings.from_environ({})

        self.assertEqual(settings.home, os.path.expanduser('~/.oktaws'))
        self.assertEqual(settings.credentials_file,
                         os.path.expanduser('~/.aws/credentials'))
        self.assertEqual(settings.config_file,
                         os.path.expanduser('~/.aws/config'))

    def test_environ_overrides(self):
        settings = config.Settings.from_environ({
            'OKTAWS_HOME': '/tmp/oktaws',
            'AWS_SHARED_CREDENTIALS_FILE': '/tmp/creds',
            'AWS_CONFIG_FILE': '/tmp/config'})

        self.assertEqual(settings.home, '/tmp/oktaws')
        self.assertEqual(settings.credentials_file, '/tmp/creds')
        self.assertEqual(settings.config_file, '/tmp/config')

    def test_empty_environ_ignored(self):
        settings = config.Settings.from_environ({'OKTAWS_HOME': ''})

        self.assertEqual(settings.home, os.path.expanduser('~/.oktaws'))


class ProfileTest(unittest.TestCase):

    def test_from_entry_string(self):
        profile = config.Profile.from_entry('prod', 'Production AWS',
                                           ['ReadOnly'], 3600)

        self.assertEqual(profile.application, 'Production AWS')
        self.assertEqual(profile.roles, ['ReadOnly'])
        self.assertIsNone(profile.account)
        self.assertEqual(profile.duration_seconds, 3600)

    def test_from_entry_mapping_overrides_defaults(self):
        profile = config.Profile.from_entry(
            'sandbox', {'application': 'AWS SSO', 'account': 'sandbox',
                        'role': 'Admin', 'duration_seconds': 900},
            ['ReadOnly'], 3600)

        self.assertEqual(profile.roles, ['Admin'])
        self.assertEqual(profile.account, 'sandbox')
        self.assertEqual(profile.duration_seconds, 900)

    def test_from_entry_no_role(self):
        with self.assertRaises(config.ConfigError) as err:
            config.Profile.from_entry('prod', 'Production AWS')

        self.assertIn('No role found', str(err.exception))

    def test_from_entry_no_application(self):
        with self.assertRaises(config.ConfigError):
            config.Profile.from_entry('prod', {'role': 'Admin'})


class OrganizationTest(unittest.TestCase):

    def setUp(self):
        self.dir = tempfile.mkdtemp()
        self.settings = config.Settings(self.dir, 'creds', 'config')

    def tearDown(self):
        shutil.rmtree(self.dir)

    def write(self, name, content):
        path = os.path.join(self.dir, name)
        with open(path, 'w') as handle:
            handle.write(content)
        return path

    def test_from_file(self):
        org = config.Organization.from_file(self.write('foobar.yml',
                                                       ORGANIZATION))

        self.assertEqual(org.name, 'foobar')
        self.assertEqual(org.username, 'bob@foobar.com')
        profiles = {p.name: p for p in org.profiles}
        self.assertEqual(profiles['production'].roles, ['ReadOnly'])
        self.assertEqual(profiles['production'].duration_seconds, 3600)
        self.assertEqual(profiles['staging'].roles, ['Admin', 'PowerUser'])
        self.assertEqual(profiles['staging'].duration_seconds, 43200)
        self.assertEqual(profiles['sandbox'].account, 'sandbox')

    def test_from_file_invalid_yaml(self):
        path = self.write('broken.yml', 'profiles: [unclosed')

        with self.assertRaises(config.ConfigError):
            config.Organization.from_file(path)

    def test_from_file_no_profiles(self):
        path = self.write('empty.yml', 'username: bob\n')

        with self.assertRaises(config.ConfigError) as err:
            config.Organization.from_file(path)

        self.assertIn('No profiles found', str(err.exception))

    def test_matching_profiles(self):
        org = config.Organization.from_file(self.write('foobar.yml',
                                                       ORGANIZATION))

        self.assertEqual([p.name for p in org.matching_profiles('s*')],
                         ['staging', 'sandbox'])
        self.assertEqual(len(org.matching_profiles('*')), 3)

    def test_organizations(self):
        self.write('foobar.yml', ORGANIZATION)
        self.write('acme.yml', ORGANIZATION)
        self.write('notes.txt', 'not an organization')

        self.assertEqual(
            [o.name for o in config.organizations(self.settings)],
            ['acme', 'foobar'])
        self.assertEqual(
            [o.name for o in config.organizations(self.settings, 'foo*')],
            ['foobar'])
        self.assertEqual(config.organizations(self.settings, 'nope'), [])


class ConfigTest(unittest.TestCase):

    def test_defaults(self):
        cfg = config.Config(['aws_okta_sts'])
        cfg.parse_args()

        self.assertEqual(cfg.organizations, '*')
        self.assertEqual(cfg.profiles, '*')
        self.assertFalse(cfg.force_new)
        self.assertFalse(cfg.init_sso)
        self.assertFalse(cfg.debug)

    def test_parse_args(self):
        cfg = config.Config(['aws_okta_sts', 'foo*', '-p', 'prod*', '-f',
                             '-D'])
        cfg.parse_args()

        self.assertEqual(cfg.organizations, 'foo*')
        self.assertEqual(cfg.profiles, 'prod*')
        self.assertTrue(cfg.force_new)
        self.assertTrue(cfg.debug)

    def test_parse_args_long(self):
        cfg = config.Config(['aws_okta_sts', 'foobar', '--init-sso',
                             '--force-new'])
        cfg.parse_args()

        self.assertTrue(cfg.init_sso)
        self.assertTrue(cfg.force_new)

    def test_version(self):
        cfg = config.Config(['aws_okta_sts', '--version'])

        with self.assertRaises(SystemExit):
            cfg.parse_args()
