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
"""Interactive prompts for passwords, codes, usernames and choices."""
import getpass
import logging
import threading

LOG = logging.getLogger(__name__)


class Prompt(object):
    """Terminal prompts.

    Profiles are resolved on worker threads, so prompts are serialized
    with a lock to keep two questions from interleaving on the terminal.
    """

    def __init__(self):
        self.lock = threading.Lock()

    @staticmethod
    def user_input(text):
        """Wrap input() to simplify testing."""
        return input(text).strip()

    @staticmethod
    def user_password(text):
        """Wrap getpass to simplify testing."""
        return getpass.getpass(text)

    def text(self, prompt, default=None):
        """Ask for free text, returning default on an empty answer."""
        if default:
            prompt = '{} [{}]'.format(prompt, default)
        with self.lock:
            value = self.user_input('{}: '.format(prompt))
        return value or default

    def password(self, prompt):
        with self.lock:
            return self.user_password('{}: '.format(prompt))

    def select(self, items, title, label=str):
        """Present a numbered menu and return the chosen item.

        Args:
            items: Non-empty list of choices
            title: Heading printed above the menu
            label: Function turning an item into its menu text

        Returns: One of items
        """
        with self.lock:
            while True:
                print('\n{}'.format(title))
                width = len(str(len(items) - 1)) + 2
                for index, item in enumerate(items):
                    print('{} {}'.format('[{}]'.format(index).ljust(width),
                                         label(item)))
                try:
                    selection = int(self.user_input('Selection: '))
                except ValueError:
                    LOG.warning('Invalid selection, please try again')
                    continue
                if 0 <= selection < len(items):
                    print('')
                    return items[selection]
                LOG.warning('Invalid selection, please try again')
