from followups.services.template_service import extract_variables, render_template


def test_render_substitutes_known_variables():
    rendered = render_template(
        "Hola {nombre}, el {producto} cuesta {precio}", {"nombre": "Ana", "producto": "sofá", "precio": 199.9}
    )
    assert rendered == "Hola Ana, el sofá cuesta 199.9"


def test_render_leaves_unknown_variables_literal():
    assert render_template("Hola {x}", {}) == "Hola {x}"
    assert render_template("Hola {x}, {nombre}", {"nombre": "Ana"}) == "Hola {x}, Ana"


def test_render_without_tokens_is_identity():
    template = "¡Hola! ¿Necesitas ayuda con algo más?"
    assert render_template(template, {}) == template
    assert render_template(template, {"nombre": "Ana"}) == template


def test_render_uses_string_form_of_values():
    assert render_template("Tienes {n} artículos", {"n": 3}) == "Tienes 3 artículos"
    assert render_template("Activo: {flag}", {"flag": True}) == "Activo: True"


def test_render_blanks_none_values():
    assert render_template("Hola {nombre}{apellido}", {"nombre": "Ana", "apellido": None}) == "Hola Ana"


def test_render_ignores_non_identifier_braces():
    template = "Precio { total } y {1abc}"
    assert render_template(template, {"total": 10, "1abc": "x"}) == template


def test_render_replaces_every_occurrence():
    assert render_template("{a}-{a}-{b}", {"a": 1}) == "1-1-{b}"


def test_extract_variables_in_first_seen_order():
    assert extract_variables("Hola {nombre}, {producto} para {nombre}") == ["nombre", "producto"]
    assert extract_variables("") == []
