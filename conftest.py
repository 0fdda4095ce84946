"""Shared pytest fixtures: a temporary store, blob directory and CFDI builders."""

import pytest

from core.config import PipelineConfig
from models.records import AttachmentRecord, OperationRecord
from storage.blobs import LocalBlobStore
from storage.db import SqliteStore


DEFAULT_UUID = "5fb2822e-396d-4725-8521-cdc4bdd20ccf"


def build_cfdi_xml(
    fiscal_uuid=DEFAULT_UUID,
    receptor_rfc="XAXX010101000",
    receptor_name="PUBLICO GENERAL",
    subtotal="500.00",
    total="580.00",
    currency="MXN",
    folio="A123",
    concept_description="Servicio de flete NAVI-0001234",
    leading="",
    with_subtotal=True,
    with_tax_node=True,
):
    """A CFDI 4.0 invoice with one Concepto, as bytes."""
    moneda = f' Moneda="{currency}"' if currency else ""
    folio_attr = f' Folio="{folio}"' if folio else ""
    subtotal_attr = f' SubTotal="{subtotal}"' if with_subtotal else ""
    tax_node = '<cfdi:Impuestos TotalImpuestosTrasladados="80.00"/>' if with_tax_node else ""
    timbre = (
        f'<tfd:TimbreFiscalDigital Version="1.1" UUID="{fiscal_uuid}" '
        f'FechaTimbrado="2025-03-15T10:25:00"/>'
        if fiscal_uuid else ""
    )
    xml = f"""{leading}<?xml version="1.0" encoding="UTF-8"?>
<cfdi:Comprobante xmlns:cfdi="http://www.sat.gob.mx/cfd/4"
    xmlns:tfd="http://www.sat.gob.mx/TimbreFiscalDigital"
    Version="4.0" Serie="A"{folio_attr} Fecha="2025-03-15T10:22:11"
   {subtotal_attr} Total="{total}"{moneda}
    TipoDeComprobante="I" Exportacion="01" MetodoPago="PUE" FormaPago="03"
    LugarExpedicion="64000">
  <cfdi:Emisor Rfc="TGO190101AB1" Nombre="TRANSPORTES DEL GOLFO" RegimenFiscal="601"/>
  <cfdi:Receptor Rfc="{receptor_rfc}" Nombre="{receptor_name}"
      DomicilioFiscalReceptor="64000" RegimenFiscalReceptor="616" UsoCFDI="S01"/>
  <cfdi:Conceptos>
    <cfdi:Concepto ClaveProdServ="78101803" NoIdentificacion="FL-01" Cantidad="1"
        ClaveUnidad="E48" Descripcion="{concept_description}"
        ValorUnitario="{subtotal}" Importe="{subtotal}" ObjetoImp="02">
      <cfdi:Impuestos>
        <cfdi:Traslados>
          <cfdi:Traslado Base="{subtotal}" Impuesto="002" TipoFactor="Tasa"
              TasaOCuota="0.160000" Importe="80.00"/>
        </cfdi:Traslados>
      </cfdi:Impuestos>
    </cfdi:Concepto>
  </cfdi:Conceptos>
  {tax_node}
  <cfdi:Complemento>{timbre}</cfdi:Complemento>
</cfdi:Comprobante>
"""
    return xml.encode("utf-8")


def build_cfdi_text(
    fiscal_uuid=DEFAULT_UUID,
    receptor_rfc="CAL980512QW3",
    receptor_name="COMERCIALIZADORA ALVAREZ SA DE CV",
    currency="MXN",
):
    """Text layer of a Facturama printed representation."""
    currency_line = f"Moneda: {currency}\n" if currency else ""
    return (
        "FACTURA\n"
        "Emisor:\n"
        "TRANSPORTES DEL GOLFO SA DE CV TGO190101AB1\n"
        "Régimen Fiscal: 601 - General de Ley Personas Morales\n"
        "Receptor:\n"
        f"{receptor_name}\n"
        f"{receptor_rfc}\n"
        "AV REFORMA 100 CENTRO, MONTERREY, NUEVO LEON\n"
        "Código postal: 64000\n"
        "Uso del CFDI: G03 - Gastos en general\n"
        f"Folio Fiscal: {fiscal_uuid}\n"
        "FOLIO: 1234\n"
        "Fecha/Hora de Emisión: 15/03/2025 10:22:11\n"
        f"{currency_line}"
        "Método de Pago: PUE\n"
        "Forma de Pago: 03 - Transferencia electrónica de fondos\n"
        "Efecto del comprobante: I - Ingreso\n"
        "Exportacion: 01 - No aplica\n"
        "Producto Cantidad Unidad Concepto Precio Importe\n"
        "78101803 1.00 E48 - Unidad de servicio Flete NAVI-0001234 $1,000.00 $1,000.00\n"
        "Subtotal: $1,000.00\n"
        "IVA 16%: $160.00\n"
        "Total: $1,160.00\n"
        "Este documento es una representación impresa de un CFDI, sellado por el SAT\n"
    )


@pytest.fixture
def config(tmp_path):
    return PipelineConfig(db_path=tmp_path / "test.db", blob_root=tmp_path / "blobs")


@pytest.fixture
def store(config):
    store = SqliteStore(config.db_path)
    store.init_db()
    return store


@pytest.fixture
def blobs(config):
    return LocalBlobStore(config.blob_root)


@pytest.fixture
def operation(store):
    return store.create_operation(OperationRecord(name="NAVI-0001234"))


@pytest.fixture
def cfdi_xml():
    return build_cfdi_xml


@pytest.fixture
def cfdi_text():
    return build_cfdi_text


@pytest.fixture
def attach(store, blobs):
    """Store bytes as an attachment of an operation and return the record."""
    def _attach(operation_id, filename, data, mime_type=None, is_inline=False, size_bytes=None):
        key = f"{operation_id}/{filename}"
        blobs.put_bytes(data, key)
        return store.add_attachment(AttachmentRecord(
            operation_id=operation_id,
            filename=filename,
            mime_type=mime_type,
            size_bytes=len(data) if size_bytes is None else size_bytes,
            is_inline=is_inline,
            storage_key=key,
        ))
    return _attach
