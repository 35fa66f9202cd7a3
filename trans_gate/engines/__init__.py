# trans_gate/engines/__init__.py
"""远端生成引擎插件包。新增引擎只需在此包下放入继承 `BaseCompletionEngine` 的模块。"""
