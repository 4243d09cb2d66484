"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient

# A Move module with one finding in every category except LogicDefect
SAMPLE_MOVE_VULNERABLE = '''
module 0x42::vault {
    use std::signer;
    use aptos_framework::coin;
    use aptos_framework::timestamp;

    struct Vault has key {
        balance: u64,
        frozen: bool,
    }

    public entry fun withdraw(account: &signer, amount: u64) acquires Vault {
        let addr = signer::address_of(account);
        let vault = borrow_global_mut<Vault>(addr);
        coin::transfer<u64>(account, @0x1, amount);
        vault.balance = vault.balance - amount;
    }

    public fun lucky_number(): u64 {
        let seed = timestamp::now_seconds();
        seed % 10
    }
}
'''

SAMPLE_MOVE_SAFE = '''
module 0x42::safe_vault {
    use std::signer;

    const E_NOT_OWNER: u64 = 1;

    struct Config has key {
        owner: address,
        paused: bool,
    }

    public entry fun set_paused(admin: &signer, paused: bool) acquires Config {
        let config = borrow_global_mut<Config>(@0x42);
        assert!(signer::address_of(admin) == config.owner, E_NOT_OWNER);
        config.paused = paused;
    }
}
'''

SAMPLE_SOLIDITY_VULNERABLE = '''// SPDX-License-Identifier: MIT
pragma solidity ^0.7.6;

interface IToken {
    function transfer(address to, uint256 amount) external returns (bool);
}

contract Lottery {
    mapping(address => uint256) public balances;
    address public owner;
    IToken public token;

    function deposit() external payable {
        balances[msg.sender] += msg.value;
    }

    function withdraw(uint256 amount) external {
        require(balances[msg.sender] >= amount, "insufficient");
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok, "transfer failed");
        balances[msg.sender] -= amount;
    }

    function sweep(address to) external {
        token.transfer(to, address(this).balance);
    }

    function pickWinner(uint256 players) external view returns (uint256) {
        uint256 seed = uint256(keccak256(abi.encodePacked(block.timestamp, msg.sender)));
        return seed % players;
    }
}
'''

SAMPLE_SOLIDITY_SAFE = '''
pragma solidity ^0.8.20;

contract Vault {
    mapping(address => uint256) public balances;
    address public owner;
    bool public paused;

    modifier onlyOwner() {
        require(msg.sender == owner, "not owner");
        _;
    }

    function setPaused(bool value) external onlyOwner {
        paused = value;
    }

    function credit(address account, uint256 amount) external onlyOwner {
        balances[account] += amount;
    }

    function balanceOf(address account) external view returns (uint256) {
        return balances[account];
    }
}
'''

SAMPLE_VYPER_VULNERABLE = '''# @version ^0.3.9

owner: public(address)
balances: public(HashMap[address, uint256])


@external
def __init__():
    self.owner = msg.sender


@external
def withdraw(amount: uint256):
    assert self.balances[msg.sender] >= amount
    send(msg.sender, amount)
    self.balances[msg.sender] -= amount


@external
def roll() -> uint256:
    return block.timestamp % 6


@external
def fast_add(a: uint256, b: uint256) -> uint256:
    return unsafe_add(a, b)


@internal
def _later():
    pass
'''

SAMPLE_VYPER_SAFE = '''
owner: public(address)
paused: public(bool)


@external
def __init__():
    self.owner = msg.sender


@external
def set_paused(value: bool):
    assert msg.sender == self.owner
    self.paused = value


@view
@external
def is_paused() -> bool:
    return self.paused
'''

SAMPLE_GO_VULNERABLE = '''package main

import (
	"math/rand"
	"net/http"
	"time"
)

type Store struct {
	balance int64
}

func (s *Store) Withdraw(client *http.Client, req *http.Request, amount int64) error {
	resp, err := client.Do(req)
	if err != nil {
	}
	s.balance = s.balance - amount
	_ = resp
	return nil
}

func handler(w http.ResponseWriter, r *http.Request) {
	n := rand.Intn(10)
	w.Write([]byte{byte(n)})
}

func seed() {
	rand.Seed(time.Now().UnixNano())
}
'''

SAMPLE_GO_SAFE = '''package main

import (
	"crypto/rand"
	"net/http"
)

func handler(w http.ResponseWriter, r *http.Request) {
	if !IsAuthenticated(r) {
		http.Error(w, "unauthorized", http.StatusUnauthorized)
		return
	}
	buf := make([]byte, 8)
	if _, err := rand.Read(buf); err != nil {
		http.Error(w, err.Error(), http.StatusInternalServerError)
		return
	}
	w.Write(buf)
}

func IsAuthenticated(r *http.Request) bool {
	return r.Header.Get("Authorization") != ""
}
'''

SAMPLE_GO_BROKEN = '''package main

func broken( {
	return
}
'''

SAMPLE_RUST_VULNERABLE = '''use rand::Rng;

pub struct Vault {
    balance: u64,
}

static mut COUNTER: u64 = 0;

impl Vault {
    pub fn deposit(&mut self, amount: u64) {
        self.balance = self.balance + amount;
    }

    pub fn read_config(path: &str) -> String {
        std::fs::read_to_string(path).unwrap()
    }

    pub fn roll(&self) -> u32 {
        let mut rng = rand::thread_rng();
        rng.gen_range(0..6)
    }

    pub fn bump(&mut self) {
        unsafe {
            COUNTER += 1;
        }
    }
}
'''

SAMPLE_RUST_SAFE = '''pub fn checked_total(a: u64, b: u64) -> Option<u64> {
    a.checked_add(b)
}

pub fn parse_port(value: &str) -> Result<u16, std::num::ParseIntError> {
    let port = value.parse::<u16>()?;
    Ok(port)
}
'''

VULNERABLE_SAMPLES = {
    "move": SAMPLE_MOVE_VULNERABLE,
    "solidity": SAMPLE_SOLIDITY_VULNERABLE,
    "vyper": SAMPLE_VYPER_VULNERABLE,
    "go": SAMPLE_GO_VULNERABLE,
    "rust": SAMPLE_RUST_VULNERABLE,
}

SAFE_SAMPLES = {
    "move": SAMPLE_MOVE_SAFE,
    "solidity": SAMPLE_SOLIDITY_SAFE,
    "vyper": SAMPLE_VYPER_SAFE,
    "go": SAMPLE_GO_SAFE,
    "rust": SAMPLE_RUST_SAFE,
}


@pytest.fixture
def sample_move_vulnerable() -> str:
    """Move module with unguarded withdraw, randomness and global access."""
    return SAMPLE_MOVE_VULNERABLE


@pytest.fixture
def sample_solidity_vulnerable() -> str:
    """Solidity 0.7 lottery with reentrancy and timestamp randomness."""
    return SAMPLE_SOLIDITY_VULNERABLE


@pytest.fixture
def sample_vyper_vulnerable() -> str:
    """Vyper contract with send-before-write and unsafe arithmetic."""
    return SAMPLE_VYPER_VULNERABLE


@pytest.fixture
def sample_go_vulnerable() -> str:
    """Go service with an unchecked HTTP call and math/rand."""
    return SAMPLE_GO_VULNERABLE


@pytest.fixture
def sample_rust_vulnerable() -> str:
    """Rust impl with unwrap, thread_rng and static mut."""
    return SAMPLE_RUST_VULNERABLE


@pytest.fixture
def registry():
    """Registry built from the detector catalog with default options."""
    from auditlens.analyzers.registry import build_default_registry

    return build_default_registry()


@pytest.fixture
def client():
    """Test client for the HTTP API."""
    from auditlens.main import app

    with TestClient(app) as client:
        yield client


@pytest.fixture
def vulnerable_samples() -> dict[str, str]:
    """One vulnerable sample per language tag."""
    return dict(VULNERABLE_SAMPLES)


@pytest.fixture
def safe_samples() -> dict[str, str]:
    """One clean sample per language tag."""
    return dict(SAFE_SAMPLES)


@pytest.fixture
def sample_go_broken() -> str:
    """Go source with a syntax error."""
    return SAMPLE_GO_BROKEN
