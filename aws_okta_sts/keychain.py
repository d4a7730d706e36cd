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
"""OS secret store access for cached Okta passwords."""
import logging

import keyring
from keyring.errors import KeyringError

LOG = logging.getLogger(__name__)


class Keychain(object):
    """Best-effort wrapper around keyring.

    A missing or broken keyring backend never stops a login; lookups fall
    back to prompting and writes are logged and forgotten.
    """

    def get_password(self, service, username):
        try:
            return keyring.get_password(service, username)
        except KeyringError as err:
            LOG.warning('Unable to read password from keyring: {}'.format(
                err))
            return None

    def set_password(self, service, username, password):
        try:
            keyring.set_password(service, username, password)
        except KeyringError as err:
            LOG.warning('Unable to save password to keyring: {}'.format(err))
