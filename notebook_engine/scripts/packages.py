"""Cells for the interpreter's package manager"""

from packaging.requirements import InvalidRequirement, Requirement

from notebook_engine.exceptions import ValidationError
from notebook_engine.scripts.assembler import ScriptAssembler, constants_block

INSTALL_BODY = '''
import subprocess
import sys

completed = subprocess.run(
    [sys.executable, "-m", "pip", "install", "--disable-pip-version-check", REQUIREMENT],
    capture_output=True,
    text=True,
)
print(completed.stdout)
set_result({"installed": completed.returncode == 0, "log": completed.stderr[-4000:]})
'''

LIST_BODY = '''
from importlib import metadata

packages = {}
for dist in metadata.distributions():
    name = dist.metadata["Name"]
    if name:
        packages[name.lower()] = {"name": name, "version": dist.version}

set_result(sorted(packages.values(), key=lambda item: item["name"].lower()))
'''


def validate_requirement(requirement: str) -> str:
    """
    Check a requirement string before it reaches the package manager.

    Accepts a project name with optional extras and version specifiers,
    e.g. "scikit-learn", "pandas[performance]", "numpy >= 1.24, <3".
    Returns the normalised requirement handed to pip.

    Raises:
        ValidationError: If it is empty, unparsable, or carries a URL,
            an environment marker or a pip option
    """
    requirement = (requirement or "").strip()
    details = {"package": requirement}
    if not requirement or requirement.startswith("-"):
        raise ValidationError(f"Invalid package name: {requirement!r}", details)

    try:
        parsed = Requirement(requirement)
    except InvalidRequirement as e:
        raise ValidationError(f"Invalid package name: {requirement!r}: {e}", details) from e

    if parsed.url:
        raise ValidationError(f"Direct URL requirements are not allowed: {requirement!r}", details)
    if parsed.marker is not None:
        raise ValidationError(f"Environment markers are not allowed: {requirement!r}", details)
    return str(parsed)


def build_install_script(requirement: str) -> str:
    requirement = validate_requirement(requirement)
    return (
        ScriptAssembler()
        .add_block(constants_block({"REQUIREMENT": requirement}).source)
        .add_block(INSTALL_BODY)
        .build("<install>")
    )


def build_list_packages_script() -> str:
    return ScriptAssembler().add_block(LIST_BODY).build("<packages>")
