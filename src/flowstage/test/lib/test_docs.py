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
import doctest

import pytest

import flowstage.cwl.utils
import flowstage.lib.pipes
import flowstage.lib.threading
import flowstage.staging.registry


@pytest.mark.parametrize("module", [flowstage.cwl.utils,
                                    flowstage.lib.pipes,
                                    flowstage.lib.threading,
                                    flowstage.staging.registry])
def test_docstring_examples(module) -> None:
    result = doctest.testmod(module, optionflags=doctest.ELLIPSIS)
    assert result.failed == 0
