from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List
from xml.sax.saxutils import escape

from bs4 import BeautifulSoup

_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}

PURCHASE_ACCOUNT_LEDGER = "Purchase Account"
MAIN_GODOWN = "Main Location"

COMPANIES_ENVELOPE = """<ENVELOPE>
  <HEADER>
    <VERSION>1</VERSION>
    <TALLYREQUEST>EXPORT</TALLYREQUEST>
    <TYPE>COLLECTION</TYPE>
    <ID>ListOfCompanies</ID>
  </HEADER>
  <BODY>
    <DESC>
      <STATICVARIABLES>
        <SVEXPORTFORMAT>$$SysName:XML</SVEXPORTFORMAT>
      </STATICVARIABLES>
      <TDL>
        <TDLMESSAGE>
          <COLLECTION Name='ListOfCompanies'>
            <TYPE>Company</TYPE>
            <FETCH>Name,CompanyNumber</FETCH>
          </COLLECTION>
        </TDLMESSAGE>
      </TDL>
    </DESC>
  </BODY>
</ENVELOPE>"""


def _x(value) -> str:
    return escape(str(value if value is not None else ""), _XML_ENTITIES)


@dataclass(frozen=True)
class PurchaseOrderVoucher:
    """Values for one Purchase Order voucher; dates are YYYYMMDD strings."""

    company: str
    guid: str
    vouchernumber: str
    date: str
    order_due_date: str
    supplier_name: str
    item_name: str
    quantity: str
    rate: str
    amount: str
    primary_unit: str
    alt_unit: str


def purchase_order_envelope(voucher: PurchaseOrderVoucher) -> str:
    quantity = f"{_x(voucher.quantity)} {_x(voucher.primary_unit)}"
    return f"""<ENVELOPE>
  <HEADER>
    <TALLYREQUEST>Import Data</TALLYREQUEST>
  </HEADER>
  <BODY>
    <IMPORTDATA>
      <REQUESTDESC>
        <REPORTNAME>Vouchers</REPORTNAME>
        <STATICVARIABLES>
          <SVCURRENTCOMPANY>{_x(voucher.company)}</SVCURRENTCOMPANY>
        </STATICVARIABLES>
      </REQUESTDESC>
      <REQUESTDATA>
        <TALLYMESSAGE xmlns:UDF="TallyUDF">
          <VOUCHER VCHTYPE="Purchase Order" ACTION="Create">
            <DATE>{_x(voucher.date)}</DATE>
            <GUID>{_x(voucher.guid)}</GUID>
            <VOUCHERTYPENAME>Purchase Order</VOUCHERTYPENAME>
            <VOUCHERNUMBER>{_x(voucher.vouchernumber)}</VOUCHERNUMBER>
            <PARTYLEDGERNAME>{_x(voucher.supplier_name)}</PARTYLEDGERNAME>
            <PERSISTEDVIEW>Order Details</PERSISTEDVIEW>
            <ALLLEDGERENTRIES.LIST>
              <LEDGERNAME>{_x(voucher.supplier_name)}</LEDGERNAME>
              <ISDEEMEDPOSITIVE>No</ISDEEMEDPOSITIVE>
              <AMOUNT>-{_x(voucher.amount)}</AMOUNT>
            </ALLLEDGERENTRIES.LIST>
            <ALLLEDGERENTRIES.LIST>
              <LEDGERNAME>{PURCHASE_ACCOUNT_LEDGER}</LEDGERNAME>
              <ISDEEMEDPOSITIVE>Yes</ISDEEMEDPOSITIVE>
              <AMOUNT>{_x(voucher.amount)}</AMOUNT>
            </ALLLEDGERENTRIES.LIST>
            <ALLINVENTORYENTRIES.LIST>
              <STOCKITEMNAME>{_x(voucher.item_name)}</STOCKITEMNAME>
              <ISDEEMEDPOSITIVE>Yes</ISDEEMEDPOSITIVE>
              <RATE>{_x(voucher.rate)}/{_x(voucher.alt_unit)}</RATE>
              <AMOUNT>{_x(voucher.amount)}</AMOUNT>
              <ACTUALQTY>{quantity}</ACTUALQTY>
              <BILLEDQTY>{quantity}</BILLEDQTY>
              <BATCHALLOCATIONS.LIST>
                <GODOWNNAME>{MAIN_GODOWN}</GODOWNNAME>
                <BATCHNAME>{_x(voucher.vouchernumber)}</BATCHNAME>
                <ORDERDUEDATE>{_x(voucher.order_due_date)}</ORDERDUEDATE>
                <BILLEDQTY>{quantity}</BILLEDQTY>
                <ACTUALQTY>{quantity}</ACTUALQTY>
              </BATCHALLOCATIONS.LIST>
            </ALLINVENTORYENTRIES.LIST>
          </VOUCHER>
        </TALLYMESSAGE>
      </REQUESTDATA>
    </IMPORTDATA>
  </BODY>
</ENVELOPE>"""


def _child_text(element, name: str) -> str:
    child = element.find(name, recursive=False)
    if child is None:
        return ""
    return child.get_text(strip=True)


def parse_companies(xml_text: str) -> List[Dict[str, str]]:
    """
    Company name and number from a ListOfCompanies export.

    Tally sends the name either as a ``NAME`` attribute on ``COMPANY`` or as a
    ``NAME`` child element; the attribute wins when both are present.
    """
    soup = BeautifulSoup(xml_text, "lxml-xml")
    companies = []
    for company in soup.find_all("COMPANY"):
        name = (company.get("NAME") or "").strip() or _child_text(company, "NAME")
        if not name:
            continue
        companies.append(
            {
                "name": name,
                "companyNumber": _child_text(company, "COMPANYNUMBER"),
            }
        )
    return companies


@dataclass
class ImportResult:
    created: int = 0
    altered: int = 0
    errors: int = 0
    line_errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.errors == 0 and not self.line_errors and (self.created + self.altered) > 0

    def describe(self) -> str:
        if self.line_errors:
            return "; ".join(self.line_errors)
        return (
            f"created={self.created}, altered={self.altered}, errors={self.errors}"
        )


def _count(soup, name: str) -> int:
    element = soup.find(name)
    if element is None:
        return 0
    try:
        return int(element.get_text(strip=True) or 0)
    except ValueError:
        return 0


def parse_import_result(xml_text: str) -> ImportResult:
    soup = BeautifulSoup(xml_text or "", "lxml-xml")
    return ImportResult(
        created=_count(soup, "CREATED"),
        altered=_count(soup, "ALTERED"),
        errors=_count(soup, "ERRORS"),
        line_errors=[
            text
            for text in (el.get_text(strip=True) for el in soup.find_all("LINEERROR"))
            if text
        ],
    )
