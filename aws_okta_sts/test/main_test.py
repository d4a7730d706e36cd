import unittest
from unittest import mock

from aws_okta_sts import __main__ as main


class MainTest(unittest.TestCase):

    @mock.patch('aws_okta_sts.__main__.logging.getLogger')
    @mock.patch('aws_okta_sts.__main__.Keyman')
    def test_entry_point_func(self, keyman_mock, _logger_mock):
        keyman_mock.return_value.main.return_value = 5

        with self.assertRaises(SystemExit) as exit_info:
            main.entry_point()

        self.assertEqual(exit_info.exception.code, 5)
        keyman_mock.assert_has_calls([
            mock.call(mock.ANY),
            mock.call().main(),
        ])
