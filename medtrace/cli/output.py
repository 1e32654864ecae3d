import sys

from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.styles import Style
from prompt_toolkit import print_formatted_text


styles = {
    "main": "#ffffff bold",
    "normal": "#29bf12",
    "error": "#f71735",
    "info": "#d1d8df",
    "attention": "#ffffff bold",
    "warning": "#fcf622 italic",
    "prompt": "#00bbf9",
}

prefixes = {
    "main": "\n",
    "normal": "-> ",
    "error": "-> error: ",
    "info": "-> task: ",
    "attention": "\n: ",
    "warning": "warning! ",
    "prompt": "",
}


suffixes = {
    "main": "\n",
    "normal": "",
    "error": "",
    "info": "",
    "attention": " :",
    "warning": "",
    "prompt": "",
}

style_template = Style.from_dict(styles)


def format_text(text, style):

    if style in styles:
        prefix = prefixes.get(style)
        suffix = suffixes.get(style)
        text_template = f"class:{style}"
        text = FormattedText(
            [(text_template, prefix), (text_template, text), (text_template, suffix)]
        )
        return text

    return None


def print_cli(out, err=None, style="info"):
    """Prints an operator facing line, err goes to stderr

    Arguments:
        out {string} -- Regular message, printed when set

    Keyword Arguments:
        err {string} -- Error message, printed when out is empty (default: {None})
        style {string} -- One of styles keys (default: {"info"})
    """
    stream = sys.stdout

    if out:
        text = format_text(out, style)
    elif err:
        text = format_text(err, style)
        stream = sys.stderr
    else:
        text = None

    if text:
        print_formatted_text(text, style=style_template, file=stream)
