from __future__ import annotations

import os
import shutil
from typing import Any

from utils.logging import get_logger

logger = get_logger('dependencies')

# bluetoothctl and friends live in /usr/sbin on some distributions
EXTRA_TOOL_PATHS = ['/usr/sbin', '/sbin', '/usr/bin']


def check_tool(name: str) -> bool:
    """Check if a tool is installed."""
    return get_tool_path(name) is not None


def get_tool_path(name: str) -> str | None:
    """Get the full path to a tool, checking standard PATH and extra locations."""
    if os.path.isabs(name):
        return name if os.path.isfile(name) and os.access(name, os.X_OK) else None

    path = shutil.which(name)
    if path:
        return path

    for extra_path in EXTRA_TOOL_PATHS:
        full_path = os.path.join(extra_path, name)
        if os.path.isfile(full_path) and os.access(full_path, os.X_OK):
            return full_path

    return None


TOOL_DEPENDENCIES = {
    'bluetooth': {
        'name': 'Bluetooth Audio',
        'tools': {
            'bluetoothctl': {
                'required': True,
                'description': 'BlueZ interactive controller',
                'install': {
                    'apt': 'sudo apt install bluez',
                    'manual': 'http://www.bluez.org'
                }
            },
            'btmgmt': {
                'required': False,
                'description': 'BlueZ management tool for adapter diagnostics',
                'install': {
                    'apt': 'sudo apt install bluez',
                    'manual': 'http://www.bluez.org'
                }
            },
            'rfkill': {
                'required': False,
                'description': 'Unblocks a soft-blocked Bluetooth adapter',
                'install': {
                    'apt': 'sudo apt install rfkill',
                    'manual': 'https://www.kernel.org/pub/linux/utils/util-linux/'
                }
            }
        }
    },
    'audio': {
        'name': 'Audio Output',
        'tools': {
            'bluealsa-aplay': {
                'required': False,
                'description': 'Routes audio to a connected Bluetooth sink',
                'alternatives': ['pw-play', 'paplay'],
                'install': {
                    'apt': 'sudo apt install bluez-alsa-utils',
                    'manual': 'https://github.com/arkq/bluez-alsa'
                }
            }
        }
    }
}


def check_all_dependencies() -> dict[str, dict[str, Any]]:
    """Check all tool dependencies and return status."""
    results: dict[str, dict[str, Any]] = {}

    for group, group_config in TOOL_DEPENDENCIES.items():
        group_result = {
            'name': group_config['name'],
            'tools': {},
            'ready': True,
            'missing_required': []
        }

        for tool, tool_config in group_config['tools'].items():
            alternatives = tool_config.get('alternatives', [])
            installed = check_tool(tool) or any(check_tool(alt) for alt in alternatives)

            group_result['tools'][tool] = {
                'installed': installed,
                'required': tool_config['required'],
                'description': tool_config['description'],
                'install': tool_config['install']
            }

            if tool_config['required'] and not installed:
                group_result['ready'] = False
                group_result['missing_required'].append(tool)

        if not group_result['ready']:
            logger.warning(
                f"{group_config['name']} missing: {', '.join(group_result['missing_required'])}"
            )
        results[group] = group_result

    return results
