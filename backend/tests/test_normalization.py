import pytest

from cotizaciones.enums import PriceSchema
from cotizaciones.exceptions import ValidationError
from cotizaciones.normalization import (
    MISSING,
    adapt_legacy_payload,
    assert_no_missing,
    find_missing_paths,
    normalize_cotizacion,
    parse_payload,
)


def _normalize(raw, schema=PriceSchema.SOLICITADO):
    return normalize_cotizacion(parse_payload(raw), schema)


def test_minimal_payload_gets_every_default():
    data = _normalize({"cliente": "ACME", "tarifa": "General"})

    assert data == {
        "cliente": "ACME",
        "tarifa": "General",
        "articulos": [],
        "stockDisponible": False,
        "compradoAntes": False,
        "precioAnterior": None,
        "fechaDecision": None,
        "plazoEntrega": "",
        "lugarEntrega": "",
        "comentarioStock": "",
        "formaPagoActual": "",
        "formaPagoSolicitada": "",
        "licitacion": False,
        "clienteFinal": "",
        "comentariosCliente": "",
    }


def test_text_is_trimmed_and_numbers_coerced(solicitud):
    data = _normalize(solicitud)

    assert data["cliente"] == "Ferreteria Norte"
    taladro, broca = data["articulos"]
    assert taladro == {
        "articulo": "Taladro",
        "url": "https://example.test/taladro",
        "unidades": 3,
        "precioCliente": 120.0,
        "precioSolicitado": 99.5,
    }
    assert broca == {"articulo": "Broca", "url": "", "unidades": 10, "precioCliente": 4.5}


def test_blank_numeric_fields_default_to_zero():
    raw = {
        "cliente": "ACME",
        "tarifa": "General",
        "precioAnterior": "",
        "precioCompetencia": " ",
        "articulos": [{"articulo": "Mesa", "unidades": "", "precioCliente": "", "precioSolicitado": ""}],
    }

    data = _normalize(raw)

    assert data["articulos"] == [{"articulo": "Mesa", "url": "", "unidades": 0, "precioCliente": 0.0}]
    assert data["precioAnterior"] is None
    assert "precioCompetencia" not in data


@pytest.mark.parametrize("missing", ["cliente", "tarifa"])
def test_cliente_and_tarifa_are_required(missing):
    raw = {"cliente": "ACME", "tarifa": "General"}
    raw[missing] = "   "

    with pytest.raises(ValidationError) as excinfo:
        _normalize(raw)

    assert excinfo.value.fields == [missing]


def test_invalid_types_report_field_paths():
    raw = {"cliente": "ACME", "tarifa": "General", "articulos": [{"unidades": "muchas"}]}

    with pytest.raises(ValidationError) as excinfo:
        parse_payload(raw)

    assert "articulos[0].unidades" in excinfo.value.fields


def test_negative_units_are_rejected():
    with pytest.raises(ValidationError):
        parse_payload({"cliente": "ACME", "tarifa": "General", "articulos": [{"unidades": -1}]})


def test_cliente_final_only_kept_for_licitaciones():
    base = {"cliente": "ACME", "tarifa": "General", "clienteFinal": " Ayuntamiento "}

    assert _normalize(base)["clienteFinal"] == ""
    assert _normalize({**base, "licitacion": True})["clienteFinal"] == "Ayuntamiento"


def test_legacy_resumen_wrapper_and_aliases_are_flattened():
    raw = {
        "resumen": {"cliente": "ACME", "tarifa": "General", "precioCompet": 10},
        "comentarios": "llamar por la tarde",
    }

    data = _normalize(raw)

    assert data["cliente"] == "ACME"
    assert data["precioCompetencia"] == 10.0
    assert data["comentariosCliente"] == "llamar por la tarde"


def test_canonical_keys_win_over_legacy_aliases():
    adapted = adapt_legacy_payload(
        {"precioCompet": 5, "precioCompetencia": 7, "comentarios": "viejo", "comentariosCliente": "nuevo"}
    )

    assert adapted == {"precioCompetencia": 7, "comentariosCliente": "nuevo"}


def test_non_mapping_payload_is_rejected():
    with pytest.raises(ValidationError):
        adapt_legacy_payload(["no", "es", "un", "objeto"])


def test_price_schema_rejects_foreign_price_fields():
    raw = {
        "cliente": "ACME",
        "tarifa": "General",
        "articulos": [{"articulo": "Mesa", "precioCotizado": 80}],
    }

    with pytest.raises(ValidationError) as excinfo:
        _normalize(raw, PriceSchema.SOLICITADO)
    assert excinfo.value.fields == ["articulos[0].precioCotizado"]

    data = _normalize(raw, PriceSchema.COTIZADO)
    assert data["articulos"][0]["precioCotizado"] == 80.0
    assert "precioSolicitado" not in data["articulos"][0]


def test_missing_marker_is_found_at_any_depth():
    document = {
        "cliente": "ACME",
        "vendedor": {"uid": "u1", "email": MISSING},
        "articulos": [{"articulo": "Mesa"}, {"precioCliente": MISSING}],
    }

    assert find_missing_paths(document) == ["root.vendedor.email", "root.articulos[1].precioCliente"]
    with pytest.raises(ValidationError) as excinfo:
        assert_no_missing(document)
    assert len(excinfo.value.fields) == 2


def test_complete_document_passes_missing_check():
    assert_no_missing(_normalize({"cliente": "ACME", "tarifa": "General"}))
