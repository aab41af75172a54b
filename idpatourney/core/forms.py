"""Base form for JSON request bodies."""

from flask_wtf import FlaskForm  # type: ignore


class JsonForm(FlaskForm):
    """FlaskForm fed from a JSON body.

    Flask-WTF reads ``request.get_json()`` when the request has no form data.
    API clients send no CSRF token, so CSRF is off for these forms.
    """

    class Meta:
        csrf = False
