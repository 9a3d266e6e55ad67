# This file is part of Snagfxload
# Copyright (C) 2023 Bootlin
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License
# as published by the Free Software Foundation; either version 2
# of the License, or (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston, MA  02110-1301, USA.

"""
Every failure that ends a snagfxload run. Each kind maps to its own
process exit status so that scripts driving a production line can tell
which stage failed.
"""

EXIT_CLI_ERROR = 1
EXIT_NOT_FOUND = 3
EXIT_OPEN_FAILED = 4
EXIT_INVALID_COMBINATION = 5
EXIT_TRANSFER_FAILED = 6


class SnagfxError(Exception):
	exit_code = EXIT_CLI_ERROR
	stage = "Error"

	def __init__(self, message):
		self.message = message
		super().__init__(self.message)

	def __str__(self):
		return f"{self.stage}: {self.message}"


class DeviceNotFoundError(SnagfxError):
	"""No device satisfies the selection criterion."""
	exit_code = EXIT_NOT_FOUND
	stage = "Device selection error"


class DeviceOpenError(SnagfxError):
	"""The selected device could not be opened for exclusive use."""
	exit_code = EXIT_OPEN_FAILED
	stage = "Device access error"


class InvalidCombinationError(SnagfxError):
	"""The requested images and options cannot form a deployment plan."""
	exit_code = EXIT_INVALID_COMBINATION
	stage = "Deployment error"


class TransferError(SnagfxError):
	"""
	A transfer step could not be completed. The detail comes from the
	transfer service and is passed on untouched.
	"""
	exit_code = EXIT_TRANSFER_FAILED
	stage = "Transfer error"

	def __init__(self, detail):
		self.detail = detail
		super().__init__(detail)


class ImageFormatError(TransferError):
	def __init__(self, path, lineno, detail):
		self.path = path
		self.lineno = lineno
		super().__init__(f"{path}:{lineno}: {detail}")
