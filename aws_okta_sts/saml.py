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
"""SAML response scraping, decoding and AWS role extraction."""
import base64
import binascii
import logging
import xml.etree.ElementTree as ET

from bs4 import BeautifulSoup

LOG = logging.getLogger(__name__)

ROLE_ATTRIBUTE = 'https://aws.amazon.com/SAML/Attributes/Role'

ASSERTION_NS = 'urn:oasis:names:tc:SAML:2.0:assertion'
ASSERTION = '{{{}}}Assertion'.format(ASSERTION_NS)
ENCRYPTED_ASSERTION = '{{{}}}EncryptedAssertion'.format(ASSERTION_NS)
ATTRIBUTE_STATEMENT = '{{{}}}AttributeStatement'.format(ASSERTION_NS)
ATTRIBUTE = '{{{}}}Attribute'.format(ASSERTION_NS)
ENCRYPTED_ATTRIBUTE = '{{{}}}EncryptedAttribute'.format(ASSERTION_NS)
ATTRIBUTE_VALUE = '{{{}}}AttributeValue'.format(ASSERTION_NS)


class InvalidSaml(Exception):
    """Raised when the SAML Assertion is invalid for some reason."""


class EncryptedAssertion(InvalidSaml):
    """The assertion (or its attributes) are encrypted."""


class InvalidRole(InvalidSaml):
    """A Role attribute value is not a provider,role ARN pair."""


class Role(object):
    """An assumable AWS role offered by a SAML assertion.

    Args:
        provider_arn: ARN of the IAM SAML provider
        role_arn: ARN of the IAM role
    """

    def __init__(self, provider_arn, role_arn):
        self.provider_arn = provider_arn
        self.role_arn = role_arn

    @classmethod
    def from_string(cls, value):
        """Parse a `provider_arn,role_arn` attribute value.

        Some identity providers put the role first; the pair is put back
        in provider, role order when that happens.
        """
        parts = [part.strip() for part in value.split(',')]
        if len(parts) < 2:
            raise InvalidRole('Not enough elements in {}'.format(value))
        if len(parts) > 2:
            raise InvalidRole('Too many elements in {}'.format(value))

        provider, role = parts
        if ':saml-provider/' in role and ':saml-provider/' not in provider:
            provider, role = role, provider
        return cls(provider, role)

    @property
    def role_name(self):
        """Name of the role; everything after the last '/' of the ARN."""
        if '/' not in self.role_arn:
            raise InvalidRole('No name found in {}'.format(self.role_arn))
        return self.role_arn.rsplit('/', 1)[1]

    @property
    def account_id(self):
        """The account number embedded in the role ARN."""
        return self.role_arn.split(':')[4]

    def __eq__(self, other):
        return (isinstance(other, Role) and
                (self.provider_arn, self.role_arn) ==
                (other.provider_arn, other.role_arn))

    def __hash__(self):
        return hash((self.provider_arn, self.role_arn))

    def __str__(self):
        return self.role_arn

    def __repr__(self):
        return '<Role {} via {}>'.format(self.role_arn, self.provider_arn)


def decode(raw):
    """Base64 decode a SAMLResponse and parse it into an XML element."""
    try:
        document = base64.b64decode(raw).decode('utf-8')
    except (binascii.Error, UnicodeDecodeError) as err:
        raise InvalidSaml('Error decoding SAML ({})'.format(err))

    LOG.debug('Decoded SAML: {}'.format(document))

    try:
        return ET.fromstring(document.encode('utf-8'))
    except ET.ParseError as err:
        raise InvalidSaml('Error parsing SAML ({})'.format(err))


def roles_from_document(root):
    """Pull every AWS Role attribute value out of a SAML Response element.

    Assertions without a Role attribute give an empty list; a response
    with no assertions at all is an error. Encrypted assertions or
    attributes are refused outright.
    """
    if root.find('.//{}'.format(ENCRYPTED_ASSERTION)) is not None:
        raise EncryptedAssertion(
            'Encrypted assertions are not currently supported')

    assertions = list(root.iter(ASSERTION))
    if not assertions:
        raise InvalidSaml('No assertions found in SAML response')

    statements = [statement
                  for assertion in assertions
                  for statement in assertion.iter(ATTRIBUTE_STATEMENT)]
    if not statements:
        raise InvalidSaml('No attribute statements found in SAML assertion')

    values = []
    for statement in statements:
        if statement.find(ENCRYPTED_ATTRIBUTE) is not None:
            raise EncryptedAssertion(
                'Encrypted attributes are not currently supported')
        for attribute in statement.iter(ATTRIBUTE):
            if attribute.get('Name') != ROLE_ATTRIBUTE:
                continue
            values.extend((value.text or '')
                          for value in attribute.iter(ATTRIBUTE_VALUE))

    return [Role.from_string(value) for value in values]


def parse(raw):
    """Decode a SAMLResponse into its destination URL and offered roles.

    Args:
        raw: Base64 encoded SAML response document

    Returns:
        Tuple of (destination URL or None, list of Role)
    """
    root = decode(raw)
    return root.get('Destination'), roles_from_document(root)


class SamlResponse(object):
    """The SAML form Okta hands the browser for an AWS application.

    Args:
        url: Where the form posts to (the AWS sign-in endpoint)
        saml: Base64 encoded SAMLResponse value
        relay_state: Optional RelayState value
    """

    def __init__(self, url, saml, relay_state=None):
        self.url = url
        self.saml = saml
        self.relay_state = relay_state or ''

    def roles(self):
        """Return the AWS roles offered by the assertion."""
        return roles_from_document(decode(self.saml))

    def form(self):
        """Form fields to post to the AWS sign-in endpoint."""
        return {'SAMLResponse': self.saml, 'RelayState': self.relay_state}


def okta_error_from_html(html):
    """Parse the Okta error from an HTML error page.

    Args:
        html: String HTML from Okta

    Returns: String error from the HTML
    """
    err = ''
    soup = BeautifulSoup(html, 'html.parser')
    for err_div in soup.find_all('div', {'class': 'error-content'}):
        heading = err_div.find('h1')
        if heading is not None:
            err = heading.text.strip()
    if err == '':
        err = 'Unknown error'
    return err


def extract_saml_response(html):
    """Find the SAML form in an Okta application page.

    Args:
        html: String HTML of the page Okta served for the app link

    Returns: SamlResponse
    """
    soup = BeautifulSoup(html, 'html.parser')

    form = soup.find('form', id='appForm')
    if form is None:
        raise InvalidSaml('No SAML form found ({})'.format(
            okta_error_from_html(html)))

    url = form.get('action')
    if not url:
        raise InvalidSaml('No SAML URL found')

    saml = form.find('input', attrs={'name': 'SAMLResponse'})
    if saml is None or not saml.get('value'):
        raise InvalidSaml('No SAML Response found')

    relay_state = form.find('input', attrs={'name': 'RelayState'})
    if relay_state is not None:
        relay_state = relay_state.get('value')

    return SamlResponse(url, saml.get('value'), relay_state)
