import sys
import re
import logging
logger = logging.getLogger("snagfxload")

from snagfxload.errors import EXIT_CLI_ERROR
from snagfxload.locator import DeviceCriterion

device_spec_regex = re.compile(
	r"^(?:(?P<vid>[0-9a-fA-F]{0,4}):(?P<pid>[0-9a-fA-F]{0,4})"
	r"|(?P<bus>\d{0,3})\.(?P<port>\d{0,3}))?"
	r"(?:@(?P<index>\d+))?$"
)

def cli_error(error: str):
	logger.error(f"CLI error: {error}")
	sys.exit(EXIT_CLI_ERROR)

def int_arg(arg: str) -> int:
	"""
	Same conventions as strtoul(arg, NULL, 0): 0x prefix for hex,
	leading 0 for octal, decimal otherwise.
	"""
	arg = arg.strip()
	if arg.lower().startswith("0x"):
		return int(arg, base=16)
	if len(arg) > 1 and arg.startswith("0"):
		return int(arg, base=8)
	return int(arg)

def parse_device_spec(spec: str) -> DeviceCriterion:
	"""
	parses vid:pid[@index] and bus.port[@index] into a DeviceCriterion,
	any empty field meaning "any"
	"""
	m = device_spec_regex.match(spec.strip())
	if m is None:
		cli_error(f"invalid device {spec}, expected vid:pid or bus.port, optionally followed by @index")

	def field(name: str, base: int) -> int:
		value = m.group(name)
		return int(value, base=base) if value else 0

	return DeviceCriterion(
		vendor_id=field("vid", 16),
		product_id=field("pid", 16),
		bus=field("bus", 10),
		port=field("port", 10),
		index=field("index", 10),
	)

def prettify_criterion(criterion: DeviceCriterion) -> str:
	if criterion.interactive:
		return "interactive selection"
	parts = []
	if criterion.vendor_id or criterion.product_id:
		parts.append(f"{criterion.vendor_id:04x}:{criterion.product_id:04x}")
	if criterion.bus or criterion.port:
		parts.append(f"{criterion.bus:03d}.{criterion.port:03d}")
	return " or ".join(parts) + f" @{criterion.index}"
