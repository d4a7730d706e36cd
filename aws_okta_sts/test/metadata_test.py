import unittest

from aws_okta_sts import metadata


class MetadataTest(unittest.TestCase):

    def test_version(self):
        assert metadata.__version__

    def test_desc(self):
        assert metadata.__desc__
        assert metadata.__desc_long__
