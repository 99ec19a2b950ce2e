import gettext

# Prepare for translation
t = gettext.translation(
    domain="messages", localedir="locales", fallback=True, languages=["vi", "en"]
)
_ = t.gettext
