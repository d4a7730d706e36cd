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


__version__ = '0.3.0'
__desc__ = 'AWS Okta STS'
__desc_long__ = ('''
============
AWS Okta STS
============
AWS Okta STS exchanges an Okta login for temporary AWS credentials. It
drives the Okta authentication API (password plus Okta Verify push, SMS or
TOTP MFA), visits the AWS applications assigned to the user, and either
assumes the configured role with the resulting SAML assertion or pivots
into AWS IAM Identity Center to fetch role credentials. Credentials for
every configured profile are written to ~/.aws/credentials.

It's based on `aws_okta_keyman <https://github.com/nathan-v/aws_okta_keyman>`_
by Nathan V.''')
