# trans_gate/prompts.py
"""提示词与语言名称集中管理。各策略、降级步骤和质量门只通过这里的函数取提示词。"""

LANGUAGE_NAMES = {
    "en": "英语",
    "zh": "中文",
    "zh-CN": "简体中文",
    "zh-TW": "繁体中文",
    "ja": "日语",
    "ko": "韩语",
    "fr": "法语",
    "de": "德语",
    "es": "西班牙语",
    "pt": "葡萄牙语",
    "ru": "俄语",
    "it": "意大利语",
    "ar": "阿拉伯语",
    "hi": "印地语",
}


def language_name(code: str) -> str:
    if not code:
        return code
    return LANGUAGE_NAMES.get(code) or LANGUAGE_NAMES.get(code.lower()) or code


def simple_prompt(target_language: str) -> str:
    name = language_name(target_language)
    return (
        f"请将以下文本翻译成{name}：\n\n"
        "要求：\n"
        "- 直接翻译，保持原意\n"
        "- 保留HTML标签不变\n"
        "- 只返回翻译结果，无需解释"
    )


def enhanced_prompt(target_language: str) -> str:
    name = language_name(target_language)
    return (
        f"你是一个专业的电商翻译助手。请将用户提供的文本完全翻译成{name}。\n\n"
        "占位符保护规则（非常重要）：\n"
        '1. 绝对不能翻译、修改或删除任何以"__PROTECTED"开头、以"__"结尾的占位符\n'
        '2. 若原文中没有此类占位符，不要自行生成\n'
        "3. 不要翻译HTML标签名和属性名，只翻译标签之间的纯文本\n"
        "4. 品牌名称和产品型号保持不变\n\n"
        "翻译标准：\n"
        "- 必须完整翻译所有文本内容，不能遗漏或截断\n"
        "- 保持段落和换行结构\n"
        "- 只返回翻译结果，不要添加任何解释或说明"
    )


def strict_prompt(target_language: str) -> str:
    """完整性检查失败后重试使用的严格提示词。"""
    return (
        enhanced_prompt(target_language)
        + "\n\n上一次的译文不完整。请逐句翻译全部内容，"
        "不要输出任何前言、总结或省略号，也不要原样返回英文原文。"
    )


def simplified_prompt(target_language: str, keep_placeholders: bool = False) -> str:
    """降级步骤使用的最短提示词。文本含保护占位符时附带占位符规则。"""
    prompt = f"Translate to {target_language}. Return only the translation."
    if keep_placeholders:
        prompt += (
            ' Keep every token that starts with "__PROTECTED" and ends with "__"'
            " exactly as it is. Do not translate, change or remove it."
        )
    return prompt


def config_key_prompt(target_language: str) -> str:
    name = language_name(target_language)
    return (
        '你将收到一个由小写字母和下划线组成的配置键，例如 "social_facebook"。\n\n'
        f"请将它翻译成自然的{name}短语，供最终用户在界面中阅读：\n"
        "- 将下划线视为单词之间的空格\n"
        "- 只返回翻译后的短语，不要保留下划线\n"
        "- 不要生成任何以__PROTECTED_开头的占位符"
    )
