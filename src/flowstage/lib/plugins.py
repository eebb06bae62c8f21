# Copyright (C) 2015-2021 Regents of the University of California
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Registry of pluggable implementations, by kind and name.

URL access is the only kind so far: each scheme maps to a factory returning
the URLAccess subclass that reads it. Installed packages whose names start
with ``flowstage_url_access_`` are imported when a scheme is not found, so
they can register schemes of their own.
"""
import importlib
import pkgutil
from functools import lru_cache
from typing import Any, Literal

PluginType = Literal["url_access"]
plugin_types: list[PluginType] = ["url_access"]

_registry: dict[str, dict[str, Any]] = {kind: {} for kind in plugin_types}


def register_plugin(plugin_type: PluginType, plugin_name: str, plugin_being_registered: Any) -> None:
    _registry[plugin_type][plugin_name] = plugin_being_registered


def remove_plugin(plugin_type: PluginType, plugin_name: str) -> None:
    """Unregister a plugin. Unknown names are ignored."""
    _registry[plugin_type].pop(plugin_name, None)


def get_plugin_names(plugin_type: PluginType) -> list[str]:
    """Names of every plugin of the kind, installed packages included."""
    _load_all_plugins(plugin_type)
    return list(_registry[plugin_type])


def get_plugin(plugin_type: PluginType, plugin_name: str) -> Any:
    """
    The plugin registered under a name.

    :raises KeyError: if no plugin has the name, even after importing the
        installed plugin packages.
    """
    if plugin_name not in _registry[plugin_type]:
        _load_all_plugins(plugin_type)
    return _registry[plugin_type][plugin_name]


def _plugin_name_prefix(plugin_type: PluginType) -> str:
    return f"flowstage_{plugin_type}_"


@lru_cache(maxsize=None)
def _load_all_plugins(plugin_type: PluginType) -> None:
    # Importing a plugin package registers what it provides
    prefix = _plugin_name_prefix(plugin_type)
    for module in pkgutil.iter_modules():
        if module.name.startswith(prefix):
            importlib.import_module(module.name)
