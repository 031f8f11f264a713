"""Identifier normalization shared by definitions and usages.

Resource XML and source code spell the same resource differently:
``<style name="Theme.App">`` and ``@style/Theme.App`` in XML are
``R.style.Theme_App`` in code. Both sides go through ``normalize`` so they
meet on the R-class spelling. Names stay case-sensitive, as aapt treats them.
"""
import re

from aster.analyzer.models import ResourceIdentifier
from aster.errors import NormalizationError


# R-class resource families generated by aapt
RESOURCE_TYPES = frozenset({
    'anim', 'animator', 'array', 'attr', 'bool', 'color', 'dimen',
    'drawable', 'font', 'fraction', 'id', 'integer', 'interpolator',
    'layout', 'menu', 'mipmap', 'navigation', 'plurals', 'raw', 'string',
    'style', 'styleable', 'transition', 'xml',
})

# Resource types that are declared by a whole file under res/<type>/
FILE_BASED_TYPES = frozenset({
    'anim', 'animator', 'color', 'drawable', 'font', 'interpolator',
    'layout', 'menu', 'mipmap', 'navigation', 'raw', 'transition', 'xml',
})

TYPE_ALIASES = {
    'string-array': 'array',
    'integer-array': 'array',
    'declare-styleable': 'styleable',
}

_NAME_PATTERN = re.compile(r'^[A-Za-z_$][\w$]*$')


def normalize_type(raw_type: str) -> str:
    """Fold an element name or reference type into its R-class family."""
    resource_type = raw_type.strip()
    # '@android:string/x' style package prefixes are stripped by callers,
    # 'app:' on attr references is stripped here.
    if ':' in resource_type:
        resource_type = resource_type.rsplit(':', 1)[1]
    resource_type = TYPE_ALIASES.get(resource_type, resource_type)
    if resource_type not in RESOURCE_TYPES:
        raise NormalizationError(raw_type, "", "unknown resource type")
    return resource_type


def normalize_name(raw_name: str) -> str:
    """Convert a declared or referenced name to its R field spelling."""
    name = raw_name.strip()
    if name.startswith('+'):
        name = name[1:]
    if ':' in name:
        name = name.rsplit(':', 1)[1]
    return name.replace('.', '_').replace('-', '_')


def normalize(raw_type: str, raw_name: str) -> ResourceIdentifier:
    """Map a raw (type, name) token pair to a canonical identifier.

    Raises:
        NormalizationError: If the type is unknown or the name is not a
            valid R field name after conversion
    """
    try:
        resource_type = normalize_type(raw_type)
    except NormalizationError:
        raise NormalizationError(raw_type, raw_name, "unknown resource type") from None

    name = normalize_name(raw_name)
    if not _NAME_PATTERN.match(name):
        raise NormalizationError(raw_type, raw_name, "invalid resource name")

    return ResourceIdentifier(resource_type, name)


def file_resource_name(file_name: str) -> str:
    """Resource name declared by a file: 'ic_launcher.9.png' -> 'ic_launcher'."""
    base = file_name.split('.', 1)[0]
    return base
